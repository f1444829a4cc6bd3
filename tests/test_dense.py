"""Tests for dense output and continuous solution evaluation."""

import jax.numpy as jnp
import numpy as np
import pytest

from rkivp import IntegratorConfig, OutOfDomainError, integrate
from rkivp.dense import evaluate_step, interpolant_degree
from rkivp.tableaus import BACKWARD_EULER, DP54, EULER, HEUN_EULER, RK4, TRBDF2


def _exponential_decay(u, p, t):
    return -u


def _harmonic_oscillator(u, p, t):
    return jnp.array([u[1], -u[0]])


class TestDegree:
    def test_continuous_extension(self):
        assert interpolant_degree(DP54) == 4

    def test_hermite_degrees(self):
        assert interpolant_degree(EULER) == 1
        assert interpolant_degree(BACKWARD_EULER) == 1
        assert interpolant_degree(HEUN_EULER) == 2
        assert interpolant_degree(TRBDF2) == 2
        assert interpolant_degree(RK4) == 3


class TestEndpoints:
    @pytest.mark.parametrize(
        "method", ["euler", "heun_euler", "bs32", "rk4", "rkf45", "dp54", "trbdf2",
                   "radau_iia3", "backward_euler"],
    )
    def test_theta_one_reproduces_step_end(self, method):
        sol = integrate(
            _exponential_decay, jnp.array([1.0, 2.0]), (0.0, 1.0),
            config=IntegratorConfig(method=method, dt0=0.1),
        )
        assert sol.success
        for rec in sol:
            np.testing.assert_array_equal(evaluate_step(rec, 1.0), rec.u_end)

    @pytest.mark.parametrize("method", ["euler", "heun_euler", "rk4", "dp54"])
    def test_theta_zero_reproduces_step_start(self, method):
        sol = integrate(
            _exponential_decay, jnp.array([1.0]), (0.0, 1.0),
            config=IntegratorConfig(method=method, dt0=0.1),
        )
        for rec in sol:
            np.testing.assert_allclose(evaluate_step(rec, 0.0), rec.u, rtol=1e-12)

    def test_grid_points(self):
        sol = integrate(
            _harmonic_oscillator, jnp.array([1.0, 0.0]), (0.0, 2.0),
            config=IntegratorConfig(abstol=1e-8, reltol=1e-8),
        )
        np.testing.assert_allclose(sol(sol.ts), sol.us, rtol=1e-12, atol=1e-14)

    def test_final_time_exact(self):
        sol = integrate(
            _exponential_decay, jnp.array([1.0]), (0.0, 1.0),
            config=IntegratorConfig(method="rk4", dt0=0.3),
        )
        np.testing.assert_array_equal(sol(1.0), sol[-1].u_end)


class TestAccuracy:
    def test_dp54_interpolant(self):
        sol = integrate(
            _harmonic_oscillator, jnp.array([1.0, 0.0]), (0.0, 5.0),
            config=IntegratorConfig(abstol=1e-10, reltol=1e-10),
        )
        ts = jnp.linspace(0.0, 5.0, 37)
        expected = jnp.stack([jnp.cos(ts), -jnp.sin(ts)], axis=1)
        np.testing.assert_allclose(sol(ts), expected, atol=1e-6)

    def test_cubic_hermite(self):
        sol = integrate(
            _harmonic_oscillator, jnp.array([1.0, 0.0]), (0.0, 2.0),
            config=IntegratorConfig(method="rk4", dt0=0.05),
        )
        ts = jnp.linspace(0.01, 1.99, 23)
        expected = jnp.stack([jnp.cos(ts), -jnp.sin(ts)], axis=1)
        np.testing.assert_allclose(sol(ts), expected, atol=1e-5)

    def test_linear_interpolant_midpoint(self):
        sol = integrate(
            _exponential_decay, jnp.array([1.0]), (0.0, 1.0),
            config=IntegratorConfig(method="euler", dt0=0.1),
        )
        rec = sol[3]
        mid = 0.5 * (rec.t + rec.t_end)
        np.testing.assert_allclose(sol(mid), 0.5 * (rec.u + rec.u_end), rtol=1e-12)


class TestDomain:
    def test_before_start(self):
        sol = integrate(_exponential_decay, jnp.array([1.0]), (0.0, 1.0))
        with pytest.raises(OutOfDomainError, match="outside the solved interval"):
            sol(-0.1)

    def test_after_end(self):
        sol = integrate(_exponential_decay, jnp.array([1.0]), (0.0, 1.0))
        with pytest.raises(ValueError):
            sol(1.5)

    def test_array_with_one_outside(self):
        sol = integrate(_exponential_decay, jnp.array([1.0]), (0.0, 1.0))
        with pytest.raises(OutOfDomainError):
            sol(jnp.array([0.5, 2.0]))

    def test_scalar_and_array_shapes(self):
        sol = integrate(_exponential_decay, jnp.array([1.0, 2.0]), (0.0, 1.0))
        assert sol(0.5).shape == (2,)
        assert sol(jnp.array([0.2, 0.4, 0.6])).shape == (3, 2)
