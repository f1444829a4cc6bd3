"""
rkivp is an adaptive explicit/implicit Runge-Kutta initial value problem solver implemented in JAX.

Highlights:

- Explicit and implicit Runge-Kutta steppers driven by static Butcher
  tableaus (:mod:`rkivp.tableaus`).
- Embedded error estimation with adaptive step-size control.
- Stiffness detection with automatic explicit/implicit switching
  (``method="auto"``).
- Dense output: ``solution(t)`` anywhere inside the solved interval.
"""

from .config import set_dtype, get_dtype

from ._errors import (
    RKIVPError,
    InvalidEvaluationError,
    NonlinearDivergenceError,
    OutOfDomainError,
)

from ._types import (
    Status,
    FailureKind,
    RejectCause,
    SwitchSignal,
    NewtonStatus,
    StepResult,
)

from .tableaus import (
    Stability,
    Tableau,
    TableauRegistry,
    DEFAULT_REGISTRY,
    stability_function,
    real_stability_boundary,
)

from .vector_field import VectorField

from .steppers import (
    Stepper,
    StepperKind,
    check_step,
    explicit_rk_step,
    implicit_rk_step,
)

from ._adaptive import (
    ControllerState,
    StepSizeController,
    compute_error_norm,
)

from .stiffness import StiffnessDetector, StepObservation, spectral_estimate

from .solution import Solution, SolverStats, StepRecord

from .driver import Integrator, IntegratorConfig, integrate

from .ensemble import Problem, integrate_ensemble
