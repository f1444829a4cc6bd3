"""Tests for the rkivp.config module."""

import jax.numpy as jnp
import pytest

from rkivp.config import get_dtype, get_eps, set_dtype
from rkivp.vector_field import VectorField


@pytest.fixture(autouse=True)
def reset_dtype():
    """Reset dtype to float32 before and after each test."""
    set_dtype(jnp.float32)
    yield
    set_dtype(jnp.float32)


class TestGetSetDtype:
    def test_default_dtype(self):
        assert get_dtype() == jnp.float32

    def test_set_float64(self):
        set_dtype(jnp.float64)
        assert get_dtype() == jnp.float64

    def test_set_bfloat16(self):
        set_dtype(jnp.bfloat16)
        assert get_dtype() == jnp.bfloat16

    def test_roundtrip(self):
        for dtype in (jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64):
            set_dtype(dtype)
            assert get_dtype() == dtype

    def test_invalid_dtype_raises(self):
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype(jnp.int32)

    def test_invalid_dtype_string_raises(self):
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype("float32")


class TestEps:
    def test_eps_tracks_dtype(self):
        """Machine epsilon follows the active dtype."""
        eps32 = get_eps()
        set_dtype(jnp.float64)
        eps64 = get_eps()
        assert eps32 == pytest.approx(2.0**-23)
        assert eps64 == pytest.approx(2.0**-52)


class TestDtypePropagation:
    def test_vector_field_output_float32(self):
        """Vector-field evaluations are cast to the active dtype."""
        field = VectorField(lambda u, p, t: -u)
        assert field(jnp.array([1.0]), 0.0).dtype == jnp.float32

    def test_vector_field_output_float64(self):
        set_dtype(jnp.float64)
        field = VectorField(lambda u, p, t: -u)
        assert field(jnp.array([1.0]), 0.0).dtype == jnp.float64
