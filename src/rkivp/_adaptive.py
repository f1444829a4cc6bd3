"""Adaptive step-size control for embedded Runge-Kutta methods.

Provides the error norm, the step-size prediction formula and the
two-state controller (*propose* a trial step, *evaluate* its outcome)
used by the integration driver:

1. Compute a normalized error using mixed absolute/relative tolerances.
2. Accept the step if the normalized error is <= 1.0 and, for explicit
   methods, ``dt * lambda`` lies inside the method's stability region.
3. Predict the next step size from the error and the method order.

:class:`ControllerState` is owned by the driver for the duration of one
run and never shared between runs.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkivp._errors import InvalidEvaluationError
from rkivp._types import RejectCause
from rkivp.config import get_dtype, get_eps
from rkivp.tableaus import Tableau, stability_function
from rkivp.vector_field import VectorField

logger = logging.getLogger(__name__)

# Slack on |R(z)| <= 1 so that rounding on the boundary is not a rejection.
_STABILITY_SLACK = 1e-6


def compute_error_norm(
    error_vec: ArrayLike,
    state_new: ArrayLike,
    state_old: ArrayLike,
    abs_tol: float,
    rel_tol: float,
) -> Array:
    """Compute the normalized error norm for adaptive step-size control.

    Uses a mixed absolute/relative tolerance per component with the
    root-mean-square norm over components. The step is accepted when the
    returned value is <= 1.0.

    The per-component tolerance is:

    .. math::

        \\text{tol}_i = \\text{abs\\_tol} + \\text{rel\\_tol}
            \\cdot \\max(|u^{\\text{new}}_i|, |u^{\\text{old}}_i|)

    Args:
        error_vec: Difference between the propagated and embedded solutions.
        state_new: Propagated solution.
        state_old: State at the beginning of the step.
        abs_tol: Absolute error tolerance.
        rel_tol: Relative error tolerance.

    Returns:
        jax.Array: Scalar normalized error. Step is accepted if <= 1.0.
    """
    error_vec = jnp.asarray(error_vec, dtype=get_dtype())
    state_new = jnp.asarray(state_new, dtype=get_dtype())
    state_old = jnp.asarray(state_old, dtype=get_dtype())

    scale = abs_tol + rel_tol * jnp.maximum(jnp.abs(state_new), jnp.abs(state_old))
    return jnp.sqrt(jnp.mean(jnp.square(error_vec / scale)))


def compute_step_factor(
    error: float,
    order: float,
    safety_factor: float,
    min_scale_factor: float,
    max_scale_factor: float,
    error_prev: float | None = None,
) -> float:
    """Compute the ratio ``dt_next / dt`` from the current error estimate.

    Uses the standard optimal step-size formula

    .. math::

        \\frac{h_{\\text{next}}}{h} = S \\cdot \\text{error}^{-1/(p+1)}

    where *S* is the safety factor and *p* is the order of the error
    estimate. When *error_prev* is given, the PI form
    ``S * error^(-0.7/(p+1)) * error_prev^(0.4/(p+1))`` is used instead.
    The result is clamped to ``[min_scale_factor, max_scale_factor]``.

    Args:
        error: Normalized error from :func:`compute_error_norm`.
        order: Order of the error estimator.
        safety_factor: Multiplicative safety factor (typically 0.9).
        min_scale_factor: Minimum allowed ratio.
        max_scale_factor: Maximum allowed ratio.
        error_prev: Normalized error of the previous accepted step (PI mode).

    Returns:
        float: Step-size ratio.
    """
    if error <= 0.0:
        return max_scale_factor
    k = order + 1.0
    if error_prev is None:
        scale = safety_factor * error ** (-1.0 / k)
    else:
        scale = safety_factor * error ** (-0.7 / k) * error_prev ** (0.4 / k)
    return min(max_scale_factor, max(min_scale_factor, scale))


def check_stability(
    tableau: Tableau,
    dt: float,
    eigenvalue: complex | None,
    boundary: float,
    safety_factor: float = 0.9,
) -> tuple[bool, float]:
    """Check ``dt * lambda`` against the linear-stability region of *tableau*.

    Only eigenvalues with negative real part are checked; A- and L-stable
    tableaus always pass.

    Args:
        tableau: Method coefficients.
        dt: Trial step size.
        eigenvalue: Dominant Jacobian eigenvalue estimate, or ``None``.
        boundary: Real stability boundary of *tableau*.
        safety_factor: Fraction of the boundary targeted by the returned limit.

    Returns:
        tuple: ``(stable, dt_limit)`` where ``dt_limit`` is the step size
        that brings ``dt * |lambda|`` back inside the region (``inf`` when
        no limit applies).
    """
    if eigenvalue is None or eigenvalue.real >= 0.0 or not math.isfinite(boundary):
        return True, math.inf
    dt_limit = safety_factor * boundary / abs(eigenvalue)
    growth = abs(complex(stability_function(tableau, dt * eigenvalue)))
    return growth <= 1.0 + _STABILITY_SLACK, dt_limit


def select_initial_step(
    field: VectorField,
    t0: float,
    u0: ArrayLike,
    f0: ArrayLike,
    t_end: float,
    order: int,
    abs_tol: float,
    rel_tol: float,
) -> tuple[float, int]:
    """Estimate a starting step size.

    Follows the usual two-evaluation heuristic: a first guess from the
    ratio of ``|u0|`` to ``|f0|``, refined with a finite-difference
    estimate of the second derivative.

    Args:
        field: Vector field.
        t0: Initial time.
        u0: Initial state.
        f0: ``f(u0, t0)``.
        t_end: End of the interval.
        order: Order of the error estimator.
        abs_tol: Absolute tolerance.
        rel_tol: Relative tolerance.

    Returns:
        tuple: ``(dt0, nfev)``.
    """
    u0 = jnp.asarray(u0, dtype=get_dtype())
    f0 = jnp.asarray(f0, dtype=get_dtype())
    span = t_end - t0
    scale = abs_tol + rel_tol * jnp.abs(u0)

    def rms(x):
        return float(jnp.sqrt(jnp.mean(jnp.square(x / scale))))

    d0 = rms(u0)
    d1 = rms(f0)
    if d0 < 1e-5 or d1 < 1e-5:
        h0 = 1e-6
    else:
        h0 = 0.01 * d0 / d1
    h0 = min(h0, span)

    try:
        f1 = field.evaluate(u0 + h0 * f0, t0 + h0)
    except InvalidEvaluationError:
        return h0, 1
    d2 = rms(f1 - f0) / h0

    if max(d1, d2) <= 1e-15:
        h1 = max(1e-6, h0 * 1e-3)
    else:
        h1 = (0.01 / max(d1, d2)) ** (1.0 / (order + 1))
    return min(100.0 * h0, h1, span), 1


class ControllerState(NamedTuple):
    """Mutable-by-replacement controller state for one run.

    Attributes:
        dt: Step size to propose next.
        rejects: Consecutive rejections since the last accepted step.
        error_prev: Normalized error of the last accepted step (PI control).
    """

    dt: float
    rejects: int = 0
    error_prev: float | None = None


class Decision(NamedTuple):
    """Outcome of evaluating one tentative step.

    Attributes:
        accepted: Whether the step is committed.
        state: Controller state for the next proposal.
        cause: Rejection cause, ``None`` when accepted.
        fatal: ``True`` when the rejection budget is exhausted or ``dt``
            fell below ``dtmin``.
    """

    accepted: bool
    state: ControllerState
    cause: RejectCause | None = None
    fatal: bool = False


@dataclass(frozen=True)
class StepSizeController:
    """Accept/reject logic and step-size proposals.

    Args:
        dtmin: Smallest allowed step size; shrinking below it is fatal.
        dtmax: Largest allowed step size.
        safety: Safety factor of the step-size formula.
        min_factor: Smallest ratio ``dt_next / dt``.
        max_factor: Largest ratio ``dt_next / dt``.
        shrink_factor: Ratio applied after an invalid evaluation or Newton
            divergence.
        max_rejects: Consecutive rejections tolerated before the run fails.
        pi_control: Use the PI step-size formula after accepted steps.
    """

    dtmin: float = 1e-12
    dtmax: float = math.inf
    safety: float = 0.9
    min_factor: float = 0.2
    max_factor: float = 10.0
    shrink_factor: float = 0.5
    max_rejects: int = 20
    pi_control: bool = False

    def initial_state(self, dt0: float) -> ControllerState:
        """Return the controller state at the start of a run."""
        return ControllerState(dt=min(max(dt0, self.dtmin), self.dtmax))

    def propose(self, state: ControllerState, t: float, t_end: float) -> float:
        """Return the trial step size from *t*, landing exactly on *t_end*."""
        dt = min(state.dt, self.dtmax)
        remaining = t_end - t
        # Absorb rounding so the run does not end with a sliver step.
        if dt * (1.0 + 100.0 * get_eps()) >= remaining:
            dt = remaining
        return dt

    def evaluate(
        self,
        state: ControllerState,
        dt: float,
        error: float,
        order: int,
        *,
        adaptive: bool = True,
        stable: bool = True,
        dt_stability: float = math.inf,
    ) -> Decision:
        """Accept or reject a tentative step and propose the next step size.

        Args:
            state: Current controller state.
            dt: Step size used by the attempt.
            error: Normalized error norm (ignored when not *adaptive*).
            order: Order of the error estimate.
            adaptive: ``False`` for tableaus without embedded weights; the
                nominal step size is then kept unchanged.
            stable: Result of :func:`check_stability`.
            dt_stability: Step-size limit from :func:`check_stability`.

        Returns:
            Decision: Acceptance flag, next state and rejection cause.
        """
        if not adaptive:
            error = 0.0
        if not math.isfinite(error):
            return self.reject(state, dt, RejectCause.INVALID_EVALUATION)

        if error <= 1.0 and stable:
            if not adaptive:
                dt_next = state.dt
            else:
                error_prev = state.error_prev if self.pi_control else None
                factor = compute_step_factor(
                    error, order, self.safety, self.min_factor, self.max_factor,
                    error_prev=error_prev,
                )
                if state.rejects > 0:
                    factor = min(factor, 1.0)
                dt_next = dt * factor
            dt_next = min(max(dt_next, self.dtmin), self.dtmax)
            return Decision(
                accepted=True,
                state=ControllerState(
                    dt=dt_next, rejects=0, error_prev=max(error, 1e-4)
                ),
            )

        dt_next = dt
        if adaptive and error > 1.0:
            dt_next = dt * compute_step_factor(
                error, order, self.safety, self.min_factor, 1.0
            )
        if not stable:
            if dt_stability >= dt:
                dt_stability = dt * self.shrink_factor
            return self._rejected(
                state, min(dt_next, dt_stability), RejectCause.STABILITY
            )
        return self._rejected(state, dt_next, RejectCause.ACCURACY)

    def reject(
        self, state: ControllerState, dt: float, cause: RejectCause
    ) -> Decision:
        """Reject an attempt that failed before producing an error estimate."""
        return self._rejected(state, dt * self.shrink_factor, cause)

    def _rejected(
        self, state: ControllerState, dt_next: float, cause: RejectCause
    ) -> Decision:
        rejects = state.rejects + 1
        fatal = rejects > self.max_rejects or dt_next < self.dtmin
        logger.debug(
            "Step rejected (%s), retrying with dt=%.6g (%d consecutive)",
            cause.value, dt_next, rejects,
        )
        return Decision(
            accepted=False,
            state=ControllerState(
                dt=min(dt_next, self.dtmax), rejects=rejects,
                error_prev=state.error_prev,
            ),
            cause=cause,
            fatal=fatal,
        )

