"""Integration results.

- :class:`StepRecord`: one committed step.
- :class:`SolverStats`: evaluation and retry counters of a run.
- :class:`Solution`: ordered committed steps, terminal status, and
  continuous evaluation ``solution(t)`` through the dense-output
  interpolant.

A :class:`Solution` is built once, when its run terminates, and is never
modified afterwards. Failed and cancelled runs still return every step
committed before termination.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkivp._errors import OutOfDomainError
from rkivp._types import FailureKind, RejectCause, Status
from rkivp.dense import evaluate_step
from rkivp.tableaus import Tableau


class StepRecord(NamedTuple):
    """One committed step ``t_n -> t_n + dt``.

    Attributes:
        t: Start time ``t_n``.
        t_end: End time ``t_{n+1}`` (exactly the interval end on the last step).
        u: Start state ``u_n``.
        stages: Stage derivatives ``k``, shape ``(s, n)``.
        dt: Step size used.
        u_end: Accepted state at ``t_n + dt``.
        f_start: ``f(t_n, u_n)``.
        f_end: ``f(t_n + dt, u_end)``.
        tableau: Method that produced the step.
    """

    t: float
    t_end: float
    u: Array
    stages: Array
    dt: float
    u_end: Array
    f_start: Array
    f_end: Array
    tableau: Tableau


@dataclass
class SolverStats:
    """Counters accumulated over one run.

    Attributes:
        nfev: Vector-field evaluations (including finite-difference Jacobians).
        njev: Jacobian evaluations.
        accepted: Committed steps.
        rejected_by: Rejected attempts keyed by :class:`RejectCause`.
        newton_iters: Newton iterations over all implicit attempts.
        switches: Explicit/implicit method switches.
    """

    nfev: int = 0
    njev: int = 0
    accepted: int = 0
    rejected_by: dict = field(
        default_factory=lambda: {cause: 0 for cause in RejectCause}
    )
    newton_iters: int = 0
    switches: int = 0

    @property
    def rejected(self) -> int:
        """Total rejected attempts."""
        return sum(self.rejected_by.values())


class Solution:
    """Committed steps of one run plus its terminal status.

    Supports indexed access to :class:`StepRecord` objects and continuous
    evaluation over the solved interval.

    Args:
        t0: Initial time.
        u0: Initial state.
        steps: Committed steps in time order.
        status: Terminal status.
        failure: Failure kind when *status* is :attr:`Status.FAILED`.
        stats: Run counters.
        message: Human-readable termination reason.

    Examples:
        ```python
        sol = integrate(lambda u, p, t: -u, jnp.array([1.0]), (0.0, 1.0))
        sol(0.5)         # dense output
        sol[-1].u_end    # last committed state
        str(sol.status)  # "completed"
        ```
    """

    def __init__(
        self,
        t0: float,
        u0: Array,
        steps,
        status: Status,
        failure: FailureKind | None = None,
        stats: SolverStats | None = None,
        message: str = "",
    ):
        self._t0 = float(t0)
        self._u0 = u0
        self._steps = tuple(steps)
        self._starts = [rec.t for rec in self._steps]
        self.status = status
        self.failure = failure
        self.stats = stats if stats is not None else SolverStats()
        self.message = message

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index):
        return self._steps[index]

    def __iter__(self):
        return iter(self._steps)

    def __repr__(self) -> str:
        return (
            f"Solution(status={self.status_string!r}, steps={len(self)}, "
            f"t=[{self.t0}, {self.t_final}])"
        )

    @property
    def steps(self) -> tuple:
        """Committed steps as a tuple."""
        return self._steps

    @property
    def success(self) -> bool:
        return self.status is Status.COMPLETED

    @property
    def status_string(self) -> str:
        """``completed``, ``cancelled`` or ``failed:<kind>``."""
        if self.status is Status.FAILED and self.failure is not None:
            return f"failed:{self.failure}"
        return str(self.status)

    @property
    def t0(self) -> float:
        return self._t0

    @property
    def t_final(self) -> float:
        """End of the solved interval (``t0`` when no step was committed)."""
        if not self._steps:
            return self._t0
        return self._steps[-1].t_end

    @property
    def methods(self) -> tuple:
        """Name of the tableau used for each committed step."""
        return tuple(rec.tableau.name for rec in self._steps)

    @property
    def ts(self) -> Array:
        """Grid times ``t_0, ..., t_N`` including the final time."""
        return jnp.asarray([self._t0] + [rec.t_end for rec in self._steps])

    @property
    def us(self) -> Array:
        """Grid states, shape ``(N + 1, n)``."""
        return jnp.stack([self._u0] + [rec.u_end for rec in self._steps])

    def __call__(self, t: ArrayLike) -> Array:
        """Evaluate the solution at *t* by dense-output interpolation.

        Args:
            t: Scalar time or 1-D array of times within
                ``[t0, t_final]``.

        Returns:
            jax.Array: State of shape ``(n,)`` for scalar *t*, or
            ``(m, n)`` for an array of ``m`` times.

        Raises:
            OutOfDomainError: If any time lies outside the solved interval.
        """
        t_arr = jnp.asarray(t)
        if t_arr.ndim == 0:
            return self._evaluate(float(t_arr))
        return jnp.stack([self._evaluate(float(ti)) for ti in t_arr])

    def _evaluate(self, t: float) -> Array:
        if not (self._t0 <= t <= self.t_final):
            raise OutOfDomainError(t, self._t0, self.t_final)
        if not self._steps:
            return self._u0
        index = bisect.bisect_right(self._starts, t) - 1
        index = min(max(index, 0), len(self._steps) - 1)
        rec = self._steps[index]
        theta = 1.0 if t >= rec.t_end else (t - rec.t) / rec.dt
        return evaluate_step(rec, theta)
