"""Runge-Kutta steppers.

- :func:`explicit_rk_step` -- one explicit RK attempt with embedded error.
- :func:`implicit_rk_step` -- one implicit RK attempt (simplified Newton).
- :class:`Stepper` -- tagged variant pairing a tableau with the stepper
  family it needs, exposing a uniform ``step`` / ``order`` /
  ``stability`` capability set. The driver holds one active
  :class:`Stepper` and replaces it on a stiffness signal.
- :func:`check_step` -- host-side check of a step result that raises the
  matching :mod:`rkivp._errors` exception.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

import jax.numpy as jnp
from jax.typing import ArrayLike

from rkivp._errors import InvalidEvaluationError, NonlinearDivergenceError
from rkivp._types import NewtonStatus, StepResult
from rkivp.steppers.explicit import explicit_rk_step
from rkivp.steppers.implicit import implicit_rk_step, newton_matrix
from rkivp.tableaus import Stability, Tableau
from rkivp.vector_field import VectorField


class StepperKind(Enum):
    """Stepper family tag."""

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"

    def __str__(self) -> str:
        return self.value


class Stepper(NamedTuple):
    """A tableau tagged with its stepper family.

    Attributes:
        tableau: Coefficients of the method.
        kind: :class:`StepperKind` derived from ``tableau.implicit``.
    """

    tableau: Tableau
    kind: StepperKind

    @classmethod
    def for_tableau(cls, tableau: Tableau) -> Stepper:
        """Build the stepper matching *tableau*'s explicit/implicit tag."""
        kind = StepperKind.IMPLICIT if tableau.implicit else StepperKind.EXPLICIT
        return cls(tableau=tableau, kind=kind)

    @property
    def name(self) -> str:
        return self.tableau.name

    @property
    def order(self) -> int:
        return self.tableau.order

    @property
    def stability(self) -> Stability:
        return self.tableau.stability

    @property
    def is_implicit(self) -> bool:
        return self.kind is StepperKind.IMPLICIT

    def step(
        self,
        field: VectorField,
        t: ArrayLike,
        u: ArrayLike,
        dt: ArrayLike,
        *,
        k0: ArrayLike | None = None,
        jacobian: ArrayLike | None = None,
        abstol: float = 1e-6,
        reltol: float = 1e-3,
        newton_tol: float = 1e-2,
        newton_max_iters: int = 7,
    ) -> StepResult:
        """Compute one tentative step with the tagged stepper family.

        Newton options and *jacobian* are ignored by explicit steppers.
        """
        if self.kind is StepperKind.EXPLICIT:
            return explicit_rk_step(field, self.tableau, t, u, dt, k0=k0)
        return implicit_rk_step(
            field,
            self.tableau,
            t,
            u,
            dt,
            jacobian=jacobian,
            k0=k0,
            abstol=abstol,
            reltol=reltol,
            newton_tol=newton_tol,
            newton_max_iters=newton_max_iters,
        )


def check_step(result: StepResult, t: float) -> StepResult:
    """Raise if a step attempt failed; return *result* otherwise.

    Steppers report failures as data so they stay traceable. This turns that
    data back into exceptions on the host.

    Args:
        result: Output of :func:`explicit_rk_step` or :func:`implicit_rk_step`.
        t: Start time of the attempt, for the error message.

    Raises:
        InvalidEvaluationError: If a stage evaluation or the new state is
            non-finite.
        NonlinearDivergenceError: If the Newton iteration did not converge.
    """
    status = NewtonStatus(int(result.newton_status))
    if status is NewtonStatus.INVALID_EVALUATION:
        raise InvalidEvaluationError(t)
    if status is not NewtonStatus.CONVERGED:
        raise NonlinearDivergenceError(int(result.newton_iters), status.reason)
    if not bool(jnp.all(jnp.isfinite(result.stages))):
        raise InvalidEvaluationError(t)
    if not bool(jnp.all(jnp.isfinite(result.state))):
        raise InvalidEvaluationError(t, what="step")
    return result


__all__ = [
    "Stepper",
    "StepperKind",
    "check_step",
    "explicit_rk_step",
    "implicit_rk_step",
    "newton_matrix",
]
