"""Implicit Runge-Kutta tableaus.

- ``backward_euler``: implicit Euler, order 1, L-stable, fixed step.
- ``trbdf2``: the TR-BDF2 ESDIRK pair (trapezoidal stage followed by a
  BDF2 stage), order 2 with an embedded 3rd-order estimate, L-stable.
  Its first stage is explicit.
- ``radau_iia3``: two-stage Radau IIA collocation method, order 3,
  L-stable, fully implicit, fixed step.
"""

from __future__ import annotations

import math

from rkivp.tableaus._tableau import Stability, Tableau

BACKWARD_EULER = Tableau(
    name="backward_euler",
    a=((1.0,),),
    b=(1.0,),
    c=(1.0,),
    order=1,
    implicit=True,
    stability=Stability.L_STABLE,
)

_GAMMA = 2.0 - math.sqrt(2.0)
_D = _GAMMA / 2.0
_W = math.sqrt(2.0) / 4.0

TRBDF2 = Tableau(
    name="trbdf2",
    a=(
        (0.0, 0.0, 0.0),
        (_D, _D, 0.0),
        (_W, _W, _D),
    ),
    b=(_W, _W, _D),
    c=(0.0, _GAMMA, 1.0),
    order=2,
    implicit=True,
    stability=Stability.L_STABLE,
    b_hat=((1.0 - _W) / 3.0, (3.0 * _W + 1.0) / 3.0, _D / 3.0),
    embedded_order=3,
)

RADAU_IIA3 = Tableau(
    name="radau_iia3",
    a=(
        (5.0 / 12.0, -1.0 / 12.0),
        (3.0 / 4.0, 1.0 / 4.0),
    ),
    b=(3.0 / 4.0, 1.0 / 4.0),
    c=(1.0 / 3.0, 1.0),
    order=3,
    implicit=True,
    stability=Stability.L_STABLE,
)

IMPLICIT_TABLEAUS = (BACKWARD_EULER, TRBDF2, RADAU_IIA3)
