"""Type definitions shared across the integration loop.

- :class:`Status`: terminal status of a run.
- :class:`FailureKind`: cause of a fatal run termination.
- :class:`RejectCause`: cause of a single rejected step attempt.
- :class:`SwitchSignal`: recommendation emitted by a stiffness detector.
- :class:`NewtonStatus`: outcome code of the implicit stage solve.
- :class:`StepResult`: output of a single stepper attempt.

:class:`StepResult` is a :class:`~typing.NamedTuple`, which JAX treats as a
pytree automatically, so the steppers can return it from ``jax.jit`` and
``jax.vmap``. Failure information travels in it as an integer
:class:`NewtonStatus` code rather than as an exception.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import NamedTuple

from jax import Array


class Status(Enum):
    """Terminal status of an integration run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class FailureKind(Enum):
    """Cause of a fatal run termination."""

    DT_UNDERFLOW = "dt-underflow"
    MAX_ITERATIONS_EXCEEDED = "max-iterations-exceeded"
    INVALID_EVALUATION = "invalid-evaluation"
    NONLINEAR_DIVERGENCE = "nonlinear-divergence"

    def __str__(self) -> str:
        return self.value


class RejectCause(Enum):
    """Cause of a rejected step attempt."""

    ACCURACY = "accuracy"
    STABILITY = "stability"
    INVALID_EVALUATION = "invalid-evaluation"
    NONLINEAR_DIVERGENCE = "nonlinear-divergence"

    def failure_kind(self) -> FailureKind:
        """Return the fatal kind reported when this cause exhausts the budget."""
        return _CAUSE_TO_FAILURE[self]


_CAUSE_TO_FAILURE = {
    RejectCause.ACCURACY: FailureKind.DT_UNDERFLOW,
    RejectCause.STABILITY: FailureKind.DT_UNDERFLOW,
    RejectCause.INVALID_EVALUATION: FailureKind.INVALID_EVALUATION,
    RejectCause.NONLINEAR_DIVERGENCE: FailureKind.NONLINEAR_DIVERGENCE,
}


class SwitchSignal(Enum):
    """Recommendation from a stiffness detector to the driver."""

    NONE = "none"
    TO_IMPLICIT = "to_implicit"
    TO_EXPLICIT = "to_explicit"


class NewtonStatus(IntEnum):
    """Outcome of the Newton iteration of an implicit attempt.

    Stored as an integer in :attr:`StepResult.newton_status` so it can
    leave a traced ``jax.lax.while_loop``.
    """

    CONVERGED = 0
    MAX_ITERATIONS = 1
    DIVERGING = 2
    SINGULAR = 3
    INVALID_EVALUATION = 4

    @property
    def reason(self) -> str:
        return self.name.lower()


class StepResult(NamedTuple):
    """Result of a single tentative step.

    Returned by :func:`~rkivp.steppers.explicit.explicit_rk_step` and
    :func:`~rkivp.steppers.implicit.implicit_rk_step`. For tableaus without
    embedded weights ``error`` is all zeros.

    Attributes:
        state: Tentative state at ``t + dt``.
        error: Component-wise local error estimate ``u_high - u_embedded``.
        stages: Stage derivatives, shape ``(s, n)``.
        nfev: Vector-field evaluations spent on this attempt.
        njev: Jacobian evaluations spent on this attempt.
        newton_iters: Newton iterations (0 for explicit tableaus).
        newton_status: :class:`NewtonStatus` code of the stage solve
            (always ``CONVERGED`` for explicit tableaus).
    """

    state: Array
    error: Array
    stages: Array
    nfev: int | Array
    njev: int = 0
    newton_iters: int | Array = 0
    newton_status: int | Array = 0
