"""Tests for Butcher tableaus, the tableau registry and stability helpers."""

import math

import numpy as np
import pytest

from rkivp.tableaus import (
    BACKWARD_EULER,
    BS32,
    DEFAULT_REGISTRY,
    DP54,
    EULER,
    EXPLICIT_TABLEAUS,
    HEUN_EULER,
    IMPLICIT_TABLEAUS,
    RADAU_IIA3,
    RK4,
    RKF45,
    TRBDF2,
    Stability,
    Tableau,
    TableauRegistry,
    real_stability_boundary,
    stability_function,
)

ALL_TABLEAUS = EXPLICIT_TABLEAUS + IMPLICIT_TABLEAUS


# ──────────────────────────────────────────────
# Coefficient consistency
# ──────────────────────────────────────────────


class TestCoefficients:
    @pytest.mark.parametrize("tab", ALL_TABLEAUS, ids=lambda t: t.name)
    def test_row_sum_condition(self, tab):
        """Each abscissa equals the sum of its coupling row."""
        np.testing.assert_allclose(tab.A.sum(axis=1), tab.C, atol=1e-14)

    @pytest.mark.parametrize("tab", ALL_TABLEAUS, ids=lambda t: t.name)
    def test_weights_sum_to_one(self, tab):
        assert tab.B.sum() == pytest.approx(1.0, abs=1e-14)

    @pytest.mark.parametrize(
        "tab", [t for t in ALL_TABLEAUS if t.is_adaptive], ids=lambda t: t.name
    )
    def test_error_weights_sum_to_zero(self, tab):
        """Error weights E = b - b_hat sum to zero."""
        assert tab.E.sum() == pytest.approx(0.0, abs=1e-14)

    @pytest.mark.parametrize(
        "tab", [t for t in ALL_TABLEAUS if t.order >= 2], ids=lambda t: t.name
    )
    def test_second_order_condition(self, tab):
        assert tab.B @ tab.C == pytest.approx(0.5, abs=1e-14)

    @pytest.mark.parametrize(
        "tab", [t for t in ALL_TABLEAUS if t.order >= 3], ids=lambda t: t.name
    )
    def test_third_order_conditions(self, tab):
        assert tab.B @ tab.C**2 == pytest.approx(1.0 / 3.0, abs=1e-14)
        assert tab.B @ (tab.A @ tab.C) == pytest.approx(1.0 / 6.0, abs=1e-14)

    def test_dp54_dense_rows_reproduce_weights(self):
        """The continuous extension at theta = 1 gives the propagating weights."""
        np.testing.assert_allclose(DP54.P.sum(axis=1), DP54.B, atol=1e-12)

    def test_coefficients_are_read_only(self):
        with pytest.raises(ValueError):
            DP54.A[1, 0] = 0.0


class TestProperties:
    def test_stage_counts(self):
        assert EULER.stages == 1
        assert RK4.stages == 4
        assert DP54.stages == 7
        assert TRBDF2.stages == 3
        assert RADAU_IIA3.stages == 2

    def test_error_order(self):
        assert DP54.error_order == 4
        assert RKF45.error_order == 4
        assert HEUN_EULER.error_order == 1
        assert TRBDF2.error_order == 2
        assert RK4.error_order == 4

    def test_adaptive_flags(self):
        assert DP54.is_adaptive
        assert TRBDF2.is_adaptive
        assert not RK4.is_adaptive
        assert not BACKWARD_EULER.is_adaptive

    def test_fsal(self):
        assert DP54.is_fsal
        assert BS32.is_fsal
        assert not RK4.is_fsal
        assert not RKF45.is_fsal
        assert not TRBDF2.is_fsal

    def test_first_stage_explicit(self):
        assert DP54.first_stage_explicit
        assert TRBDF2.first_stage_explicit
        assert not BACKWARD_EULER.first_stage_explicit
        assert not RADAU_IIA3.first_stage_explicit

    def test_stability_tags(self):
        assert EULER.stability is Stability.NONE
        assert TRBDF2.stability is Stability.L_STABLE
        assert str(Stability.A_STABLE) == "A-stable"


class TestValidation:
    def test_implicit_tag_mismatch(self):
        with pytest.raises(ValueError, match="implicit"):
            Tableau(name="bad", a=((1.0,),), b=(1.0,), c=(1.0,), order=1)

    def test_explicit_tagged_implicit(self):
        with pytest.raises(ValueError, match="implicit"):
            Tableau(
                name="bad", a=((0.0,),), b=(1.0,), c=(0.0,), order=1, implicit=True
            )

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="must be"):
            Tableau(name="bad", a=((0.0, 0.0),), b=(0.5, 0.5), c=(0.0, 1.0), order=1)

    def test_embedded_order_required_with_b_hat(self):
        with pytest.raises(ValueError, match="together"):
            Tableau(
                name="bad", a=((0.0,),), b=(1.0,), c=(0.0,), order=1, b_hat=(1.0,)
            )


# ──────────────────────────────────────────────
# Linear stability
# ──────────────────────────────────────────────


class TestStabilityFunction:
    @pytest.mark.parametrize("z", [-0.5, -1.0 + 0.5j, 0.3j, -2.7])
    def test_euler(self, z):
        assert complex(stability_function(EULER, z)) == pytest.approx(1.0 + z)

    @pytest.mark.parametrize("z", [-0.5, -1.0 + 0.5j, 0.3j, -2.7])
    def test_rk4(self, z):
        expected = 1.0 + z + z**2 / 2.0 + z**3 / 6.0 + z**4 / 24.0
        assert complex(stability_function(RK4, z)) == pytest.approx(expected)

    @pytest.mark.parametrize("z", [-0.5, -10.0 + 3.0j, 2.0j])
    def test_backward_euler(self, z):
        assert complex(stability_function(BACKWARD_EULER, z)) == pytest.approx(
            1.0 / (1.0 - z)
        )

    def test_array_input(self):
        z = np.array([-1.0, -2.0, -3.0])
        np.testing.assert_allclose(stability_function(EULER, z), 1.0 + z)

    @pytest.mark.parametrize("tab", IMPLICIT_TABLEAUS, ids=lambda t: t.name)
    def test_a_stability(self, tab):
        """|R(z)| <= 1 on a grid of the left half-plane."""
        re = -np.logspace(-3, 4, 30)
        im = np.concatenate([-np.logspace(-2, 4, 20), np.logspace(-2, 4, 20)])
        z = re[:, None] + 1j * im[None, :]
        assert np.all(np.abs(stability_function(tab, z)) <= 1.0 + 1e-12)

    @pytest.mark.parametrize("tab", IMPLICIT_TABLEAUS, ids=lambda t: t.name)
    def test_l_stability(self, tab):
        """|R(z)| -> 0 as z -> -inf."""
        assert abs(complex(stability_function(tab, -1e8))) < 1e-6


class TestRealStabilityBoundary:
    def test_euler(self):
        assert real_stability_boundary(EULER) == pytest.approx(2.0, abs=1e-6)

    def test_rk4(self):
        assert real_stability_boundary(RK4) == pytest.approx(2.785, abs=1e-3)

    def test_dp54(self):
        assert 3.0 < real_stability_boundary(DP54) < 3.5

    @pytest.mark.parametrize("tab", IMPLICIT_TABLEAUS, ids=lambda t: t.name)
    def test_implicit_unbounded(self, tab):
        assert math.isinf(real_stability_boundary(tab))


# ──────────────────────────────────────────────
# Registry
# ──────────────────────────────────────────────


class TestRegistry:
    def test_default_contents(self):
        assert len(DEFAULT_REGISTRY) == len(ALL_TABLEAUS)
        assert DEFAULT_REGISTRY["dp54"] is DP54
        assert DEFAULT_REGISTRY["trbdf2"] is TRBDF2
        assert "radau_iia3" in DEFAULT_REGISTRY

    def test_unknown_method(self):
        with pytest.raises(KeyError, match="Unknown method 'nope'"):
            DEFAULT_REGISTRY["nope"]

    def test_duplicate_name(self):
        with pytest.raises(ValueError, match="Duplicate"):
            TableauRegistry([RK4, RK4])

    def test_with_tableau(self):
        midpoint = Tableau(
            name="midpoint",
            a=((0.0, 0.0), (0.5, 0.0)),
            b=(0.0, 1.0),
            c=(0.0, 0.5),
            order=2,
        )
        extended = DEFAULT_REGISTRY.with_tableau(midpoint)
        assert extended["midpoint"] is midpoint
        assert "midpoint" not in DEFAULT_REGISTRY
        assert len(extended) == len(DEFAULT_REGISTRY) + 1

    def test_stability_boundary_lookup(self):
        assert DEFAULT_REGISTRY.stability_boundary("euler") == pytest.approx(2.0, abs=1e-6)
        assert math.isinf(DEFAULT_REGISTRY.stability_boundary("trbdf2"))
