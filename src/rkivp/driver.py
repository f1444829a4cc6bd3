"""Integration driver.

Orchestrates one run: propose a step, let the active stepper attempt it,
let the controller accept or reject it, commit accepted steps, consult the
stiffness detector, and stop when the end of the interval is reached, the
iteration budget is spent, the rejection budget is exhausted, or the run is
cancelled.

Recoverable failures (accuracy or stability rejection, non-finite vector
field, Newton divergence) are retried inside the loop with a smaller step
and only show up in :class:`~rkivp.solution.SolverStats`. Fatal failures
end the run; the steps committed so far are returned together with the
failure status.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkivp._adaptive import (
    StepSizeController,
    check_stability,
    compute_error_norm,
    select_initial_step,
)
from rkivp._errors import InvalidEvaluationError, NonlinearDivergenceError
from rkivp._types import FailureKind, RejectCause, Status, SwitchSignal
from rkivp.config import get_dtype
from rkivp.solution import Solution, SolverStats, StepRecord
from rkivp.steppers import Stepper, check_step
from rkivp.stiffness import StepObservation, StiffnessDetector, spectral_estimate
from rkivp.tableaus import DEFAULT_REGISTRY, TableauRegistry
from rkivp.vector_field import VectorField, check_finite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegratorConfig:
    """Options of one integration run.

    Args:
        abstol: Absolute error tolerance.
        reltol: Relative error tolerance.
        dt0: Initial step size; ``None`` estimates one automatically.
        dtmin: Smallest step size; shrinking below it fails the run with
            ``dt-underflow``.
        dtmax: Largest step size.
        max_iters: Budget of step attempts (accepted and rejected).
        newton_tol: Convergence threshold of the implicit stage solve, in the
            weighted RMS norm of the local error.
        newton_max_iters: Newton iteration cap per attempt.
        method: Registry name of the tableau, or ``"auto"`` to switch
            between *explicit_method* and *implicit_method* on stiffness.
        explicit_method: Explicit tableau used in ``"auto"`` mode.
        implicit_method: Implicit tableau used in ``"auto"`` mode.
        safety: Safety factor of the step-size formula.
        min_factor: Smallest step-size ratio per step.
        max_factor: Largest step-size ratio per step.
        shrink_factor: Step-size ratio after an invalid evaluation or a
            Newton divergence.
        max_rejects: Consecutive rejections tolerated before failing.
        pi_control: Use PI step-size control.
        stability_check: Check explicit steps against the stability region
            of the tableau. ``None`` (default) and ``True`` check every
            explicit attempt, using the analytic Jacobian when one is
            supplied and a finite-difference Jacobian (``n`` extra
            evaluations per committed step) otherwise. ``False`` turns the
            check off.
        timeout: Wall-clock budget in seconds; exceeding it cancels the run.

    Examples:
        ```python
        from rkivp.driver import IntegratorConfig
        config = IntegratorConfig(abstol=1e-8, reltol=1e-8, method="auto")
        ```
    """

    abstol: float = 1e-6
    reltol: float = 1e-3
    dt0: float | None = None
    dtmin: float = 1e-12
    dtmax: float = math.inf
    max_iters: int = 100_000
    newton_tol: float = 1e-2
    newton_max_iters: int = 7
    method: str = "dp54"
    explicit_method: str = "dp54"
    implicit_method: str = "trbdf2"
    safety: float = 0.9
    min_factor: float = 0.2
    max_factor: float = 10.0
    shrink_factor: float = 0.5
    max_rejects: int = 20
    pi_control: bool = False
    stability_check: bool | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.abstol > 0.0:
            raise ValueError(f"abstol must be positive, got {self.abstol}")
        if not self.reltol >= 0.0:
            raise ValueError(f"reltol must be non-negative, got {self.reltol}")
        if self.dt0 is not None and not self.dt0 > 0.0:
            raise ValueError(f"dt0 must be positive, got {self.dt0}")
        if not 0.0 < self.dtmin < self.dtmax:
            raise ValueError(
                f"dtmin and dtmax must satisfy 0 < dtmin < dtmax, "
                f"got {self.dtmin} and {self.dtmax}"
            )
        if self.max_iters < 1:
            raise ValueError(f"max_iters must be >= 1, got {self.max_iters}")
        if not self.newton_tol > 0.0:
            raise ValueError(f"newton_tol must be positive, got {self.newton_tol}")
        if self.newton_max_iters < 1:
            raise ValueError(
                f"newton_max_iters must be >= 1, got {self.newton_max_iters}"
            )
        if not 0.0 < self.safety <= 1.0:
            raise ValueError(f"safety must be in (0, 1], got {self.safety}")
        if not 0.0 < self.min_factor <= 1.0 <= self.max_factor:
            raise ValueError(
                f"min_factor and max_factor must satisfy "
                f"0 < min_factor <= 1 <= max_factor, "
                f"got {self.min_factor} and {self.max_factor}"
            )
        if not 0.0 < self.shrink_factor < 1.0:
            raise ValueError(
                f"shrink_factor must be in (0, 1), got {self.shrink_factor}"
            )
        if self.max_rejects < 0:
            raise ValueError(f"max_rejects must be >= 0, got {self.max_rejects}")
        if self.timeout is not None and not self.timeout > 0.0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def auto(self) -> bool:
        return self.method == "auto"

    def controller(self) -> StepSizeController:
        """Build the step-size controller described by this configuration."""
        return StepSizeController(
            dtmin=self.dtmin,
            dtmax=self.dtmax,
            safety=self.safety,
            min_factor=self.min_factor,
            max_factor=self.max_factor,
            shrink_factor=self.shrink_factor,
            max_rejects=self.max_rejects,
            pi_control=self.pi_control,
        )


def _is_cancelled(cancel) -> bool:
    if cancel is None:
        return False
    if hasattr(cancel, "is_set"):
        return cancel.is_set()
    return bool(cancel())


class Integrator:
    """Integration driver bound to a tableau registry and stiffness policy.

    Args:
        registry: Tableaus available to ``config.method``. Defaults to
            :data:`~rkivp.tableaus.DEFAULT_REGISTRY`.
        detector: Stiffness policy used in ``"auto"`` mode. Must provide
            ``new_state()`` and ``observe(state, observation)``. Defaults to
            :class:`~rkivp.stiffness.StiffnessDetector`.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp.driver import Integrator, IntegratorConfig
        sol = Integrator().integrate(
            lambda u, p, t: -u, jnp.array([1.0]), (0.0, 1.0),
            config=IntegratorConfig(method="bs32"),
        )
        ```
    """

    def __init__(
        self,
        registry: TableauRegistry | None = None,
        detector: Any | None = None,
    ):
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.detector = detector if detector is not None else StiffnessDetector()

    def _resolve_steppers(self, config: IntegratorConfig):
        if not config.auto:
            return Stepper.for_tableau(self.registry[config.method]), None, None
        explicit = Stepper.for_tableau(self.registry[config.explicit_method])
        implicit = Stepper.for_tableau(self.registry[config.implicit_method])
        if explicit.is_implicit:
            raise ValueError(
                f"explicit_method '{explicit.name}' is an implicit tableau"
            )
        if not implicit.is_implicit:
            raise ValueError(
                f"implicit_method '{implicit.name}' is an explicit tableau"
            )
        return explicit, explicit, implicit

    def integrate(
        self,
        fun: Callable | VectorField,
        u0: ArrayLike,
        t_span: tuple[float, float],
        params: Any = None,
        *,
        jac: Callable | None = None,
        config: IntegratorConfig | None = None,
        cancel: Any = None,
    ) -> Solution:
        """Integrate ``du/dt = fun(u, params, t)`` over ``t_span``.

        Args:
            fun: Vector-field callback ``fun(u, params, t)``, or a ready
                :class:`~rkivp.vector_field.VectorField` (then *params* and
                *jac* must be omitted).
            u0: Initial state, 1-D.
            t_span: ``(t0, tf)`` with ``tf > t0``.
            params: Parameter blob passed unchanged to *fun* and *jac*.
            jac: Optional Jacobian callback ``jac(u, params, t)``.
            config: Run options. Defaults to :class:`IntegratorConfig`.
            cancel: ``threading.Event`` or zero-argument callable checked
                once per committed step.

        Returns:
            Solution: Committed steps and terminal status. Never raises for
            fatal integration failures; inspect ``solution.status``.

        Raises:
            ValueError: If the inputs or configuration are inconsistent.
            KeyError: If a method name is not in the registry.
        """
        if config is None:
            config = IntegratorConfig()
        if isinstance(fun, VectorField):
            if params is not None or jac is not None:
                raise ValueError(
                    "params and jac must be omitted when passing a VectorField"
                )
            field = fun
        else:
            field = VectorField(fun, params=params, jac=jac)

        t0, tf = float(t_span[0]), float(t_span[1])
        if not tf > t0:
            raise ValueError(f"t_span must satisfy tf > t0, got ({t0}, {tf})")
        u = jnp.asarray(u0, dtype=get_dtype())
        if u.ndim != 1:
            raise ValueError(f"u0 must be 1-D, got shape {u.shape}")

        stepper, explicit, implicit = self._resolve_steppers(config)
        return _Run(self, field, config, stepper, explicit, implicit).execute(
            t0, tf, u, cancel
        )


class _Run:
    """Mutable state of one integration run."""

    def __init__(self, integrator, field, config, stepper, explicit, implicit):
        self.registry = integrator.registry
        self.field = field
        self.config = config
        self.stepper = stepper
        self.explicit = explicit
        self.implicit = implicit
        self.controller = config.controller()
        self.stats = SolverStats()
        self.detector = integrator.detector if config.auto else None
        self.detector_state = (
            self.detector.new_state() if self.detector is not None else None
        )
        self.check_stability = config.stability_check is not False
        self.records = []

    def _switch_boundary(self) -> float:
        name = self.explicit.name if self.explicit is not None else self.stepper.name
        return self.registry.stability_boundary(name)

    def _needs_jacobian(self) -> bool:
        return self.stepper.is_implicit or self.check_stability

    def _jacobian(self, t, u, f_now):
        J, fd_evals = self.field.jacobian(u, t, f0=f_now)
        self.stats.nfev += fd_evals
        self.stats.njev += 1
        check_finite(J, t, what="Jacobian")
        spectrum = spectral_estimate(J) if self.check_stability else None
        return J, spectrum

    def execute(self, t0: float, tf: float, u: Array, cancel) -> Solution:
        config = self.config
        stats = self.stats
        logger.info(
            "Integrating over [%g, %g] with method=%s (n=%d)",
            t0, tf, config.method, u.shape[0],
        )
        started = time.monotonic()

        try:
            f_now = self.field.evaluate(u, t0)
        except InvalidEvaluationError as exc:
            stats.nfev += 1
            logger.warning("Vector field is invalid at the initial state: %s", exc)
            return self._finish(
                t0, u, Status.FAILED, FailureKind.INVALID_EVALUATION, str(exc)
            )
        stats.nfev += 1

        if config.dt0 is None:
            dt0, fev = select_initial_step(
                self.field, t0, u, f_now, tf, self.stepper.tableau.error_order,
                config.abstol, config.reltol,
            )
            stats.nfev += fev
        else:
            dt0 = config.dt0
        cstate = self.controller.initial_state(dt0)

        u0 = u
        t = t0
        attempts = 0
        cached = None
        while True:
            if attempts >= config.max_iters:
                message = f"max_iters={config.max_iters} exceeded at t={t}"
                logger.warning("%s", message)
                return self._finish(
                    t0, u0, Status.FAILED, FailureKind.MAX_ITERATIONS_EXCEEDED,
                    message,
                )
            attempts += 1

            dt = self.controller.propose(cstate, t, tf)
            landing = dt == tf - t
            tableau = self.stepper.tableau

            result = None
            f_end = None
            spectrum = None
            cause = None
            try:
                if self._needs_jacobian():
                    if cached is None:
                        cached = self._jacobian(t, u, f_now)
                    J, spectrum = cached
                else:
                    J = None
                result = self.stepper.step(
                    self.field, t, u, dt,
                    k0=f_now,
                    jacobian=J,
                    abstol=config.abstol,
                    reltol=config.reltol,
                    newton_tol=config.newton_tol,
                    newton_max_iters=config.newton_max_iters,
                )
                stats.nfev += int(result.nfev)
                stats.njev += result.njev
                check_step(result, t)
                stats.newton_iters += int(result.newton_iters)
            except InvalidEvaluationError as exc:
                logger.debug("Invalid evaluation: %s", exc)
                cause = RejectCause.INVALID_EVALUATION
            except NonlinearDivergenceError as exc:
                stats.newton_iters += exc.iterations
                logger.debug("Newton divergence: %s", exc)
                cause = RejectCause.NONLINEAR_DIVERGENCE

            if cause is not None:
                decision = self.controller.reject(cstate, dt, cause)
            else:
                error = 0.0
                if tableau.is_adaptive:
                    error = float(compute_error_norm(
                        result.error, result.state, u, config.abstol, config.reltol
                    ))
                stable, dt_limit = True, math.inf
                if (
                    self.check_stability
                    and not self.stepper.is_implicit
                    and spectrum is not None
                ):
                    stable, dt_limit = check_stability(
                        tableau, dt, spectrum.dominant,
                        self.registry.stability_boundary(tableau.name),
                        config.safety,
                    )
                decision = self.controller.evaluate(
                    cstate, dt, error, tableau.error_order,
                    adaptive=tableau.is_adaptive,
                    stable=stable,
                    dt_stability=dt_limit,
                )
                if decision.accepted:
                    t_new = tf if landing else t + dt
                    if tableau.is_fsal:
                        f_end = result.stages[-1]
                    else:
                        try:
                            f_end = self.field.evaluate(result.state, t_new)
                        except InvalidEvaluationError as exc:
                            logger.debug("Invalid evaluation: %s", exc)
                            decision = self.controller.reject(
                                cstate, dt, RejectCause.INVALID_EVALUATION
                            )
                        stats.nfev += 1

            cstate = decision.state
            signal = self._observe(decision, dt, spectrum)

            if decision.accepted:
                self.records.append(StepRecord(
                    t=t, t_end=t_new, u=u, stages=result.stages, dt=dt,
                    u_end=result.state, f_start=f_now, f_end=f_end,
                    tableau=tableau,
                ))
                stats.accepted += 1
                t, u, f_now = t_new, result.state, f_end
                cached = None
            else:
                stats.rejected_by[decision.cause] += 1
                if decision.fatal:
                    kind = decision.cause.failure_kind()
                    message = (
                        f"{kind} at t={t}: {cstate.rejects} consecutive "
                        f"rejections, dt={cstate.dt:.3g}"
                    )
                    logger.warning("%s", message)
                    return self._finish(t0, u0, Status.FAILED, kind, message)

            if signal is not SwitchSignal.NONE:
                self._switch(signal, t)

            if decision.accepted:
                if t >= tf:
                    return self._finish(t0, u0, Status.COMPLETED)
                if _is_cancelled(cancel):
                    logger.info("Run cancelled at t=%g", t)
                    return self._finish(t0, u0, Status.CANCELLED, message="cancelled")
                if (
                    config.timeout is not None
                    and time.monotonic() - started > config.timeout
                ):
                    logger.info("Run timed out at t=%g", t)
                    return self._finish(t0, u0, Status.CANCELLED, message="timeout")

    def _observe(self, decision, dt, spectrum) -> SwitchSignal:
        if self.detector is None:
            return SwitchSignal.NONE
        obs = StepObservation(
            implicit=self.stepper.is_implicit,
            accepted=decision.accepted,
            cause=decision.cause,
            dt=dt,
            spectrum=spectrum,
            explicit_boundary=self._switch_boundary(),
        )
        return self.detector.observe(self.detector_state, obs)

    def _switch(self, signal: SwitchSignal, t: float) -> None:
        target = self.implicit if signal is SwitchSignal.TO_IMPLICIT else self.explicit
        if target is None or target == self.stepper:
            return
        logger.info("Switching %s -> %s at t=%g", self.stepper.name, target.name, t)
        self.stepper = target
        self.stats.switches += 1

    def _finish(self, t0, u0, status, failure=None, message="") -> Solution:
        logger.info(
            "Run finished: %s after %d accepted / %d rejected steps (nfev=%d)",
            status if failure is None else f"{status}:{failure}",
            self.stats.accepted, self.stats.rejected, self.stats.nfev,
        )
        return Solution(
            t0, u0, self.records, status,
            failure=failure, stats=self.stats, message=message,
        )


_DEFAULT_INTEGRATOR = Integrator()


def integrate(
    fun: Callable | VectorField,
    u0: ArrayLike,
    t_span: tuple[float, float],
    params: Any = None,
    *,
    jac: Callable | None = None,
    config: IntegratorConfig | None = None,
    cancel: Any = None,
) -> Solution:
    """Integrate with the default registry and stiffness policy.

    Shorthand for ``Integrator().integrate(...)``; see
    :meth:`Integrator.integrate`.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp import IntegratorConfig, integrate, set_dtype
        set_dtype(jnp.float64)
        sol = integrate(
            lambda u, p, t: -u, jnp.array([1.0]), (0.0, 1.0),
            config=IntegratorConfig(abstol=1e-8, reltol=1e-8),
        )
        str(sol.status)  # "completed"
        ```
    """
    return _DEFAULT_INTEGRATOR.integrate(
        fun, u0, t_span, params, jac=jac, config=config, cancel=cancel
    )
