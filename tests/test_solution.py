"""Tests for Solution containers and run statistics."""

import jax.numpy as jnp
import numpy as np
import pytest

from rkivp import (
    FailureKind,
    IntegratorConfig,
    RejectCause,
    Solution,
    SolverStats,
    Status,
    integrate,
)


def _exponential_decay(u, p, t):
    return -u


@pytest.fixture
def euler_solution():
    return integrate(
        _exponential_decay, jnp.array([1.0, 2.0]), (0.0, 1.0),
        config=IntegratorConfig(method="euler", dt0=0.25),
    )


class TestSolution:
    def test_sequence_protocol(self, euler_solution):
        assert len(euler_solution) == 4
        assert euler_solution[0].t == 0.0
        assert euler_solution[-1].t_end == 1.0
        assert len(list(euler_solution)) == 4
        assert euler_solution.steps[1] is euler_solution[1]

    def test_grid(self, euler_solution):
        np.testing.assert_allclose(euler_solution.ts, [0.0, 0.25, 0.5, 0.75, 1.0])
        assert euler_solution.us.shape == (5, 2)
        np.testing.assert_array_equal(euler_solution.us[0], [1.0, 2.0])
        np.testing.assert_allclose(euler_solution.us[1], [0.75, 1.5])

    def test_methods(self, euler_solution):
        assert euler_solution.methods == ("euler",) * 4

    def test_status(self, euler_solution):
        assert euler_solution.success
        assert euler_solution.status_string == "completed"
        assert euler_solution.failure is None

    def test_repr(self, euler_solution):
        assert repr(euler_solution) == (
            "Solution(status='completed', steps=4, t=[0.0, 1.0])"
        )

    def test_empty_solution(self):
        sol = Solution(
            0.0, jnp.array([1.0]), [], Status.FAILED,
            failure=FailureKind.DT_UNDERFLOW,
        )
        assert len(sol) == 0
        assert sol.t_final == 0.0
        assert sol.status_string == "failed:dt-underflow"
        assert not sol.success
        np.testing.assert_array_equal(sol(0.0), [1.0])
        with pytest.raises(ValueError):
            sol(0.1)


class TestSolverStats:
    def test_defaults(self):
        stats = SolverStats()
        assert stats.rejected == 0
        assert set(stats.rejected_by) == set(RejectCause)

    def test_counts(self, euler_solution):
        stats = euler_solution.stats
        assert stats.accepted == 4
        assert stats.rejected == 0
        # Initial evaluation, one end derivative per step and, for the
        # stability check, a two-column finite-difference Jacobian per step.
        assert stats.nfev == 1 + 4 + 4 * 2
        assert stats.njev == 4
        assert stats.switches == 0

    def test_rejections_by_cause(self):
        stats = SolverStats()
        stats.rejected_by[RejectCause.ACCURACY] += 2
        stats.rejected_by[RejectCause.STABILITY] += 1
        assert stats.rejected == 3


class TestStatus:
    def test_terminal_values_only(self):
        assert [str(s) for s in Status] == ["completed", "cancelled", "failed"]
