"""Runge-Kutta coefficient sets and the tableau registry.

:data:`DEFAULT_REGISTRY` holds every built-in tableau:

- explicit: ``euler``, ``heun_euler``, ``bs32``, ``rk4``, ``rkf45``, ``dp54``
- implicit: ``backward_euler``, ``trbdf2``, ``radau_iia3``

Pass a custom :class:`TableauRegistry` to
:class:`~rkivp.driver.Integrator` to add methods.
"""

from rkivp.tableaus._tableau import (
    Stability,
    Tableau,
    TableauRegistry,
    real_stability_boundary,
    stability_function,
)
from rkivp.tableaus.explicit import (
    BS32,
    DP54,
    EULER,
    EXPLICIT_TABLEAUS,
    HEUN_EULER,
    RK4,
    RKF45,
)
from rkivp.tableaus.implicit import (
    BACKWARD_EULER,
    IMPLICIT_TABLEAUS,
    RADAU_IIA3,
    TRBDF2,
)

DEFAULT_REGISTRY = TableauRegistry(EXPLICIT_TABLEAUS + IMPLICIT_TABLEAUS)

__all__ = [
    "Stability",
    "Tableau",
    "TableauRegistry",
    "DEFAULT_REGISTRY",
    "stability_function",
    "real_stability_boundary",
    "EULER",
    "HEUN_EULER",
    "BS32",
    "RK4",
    "RKF45",
    "DP54",
    "BACKWARD_EULER",
    "TRBDF2",
    "RADAU_IIA3",
]
