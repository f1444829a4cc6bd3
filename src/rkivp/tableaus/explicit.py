"""Explicit Runge-Kutta tableaus.

Coefficients are the published rational values, written as Python floats.

- ``euler``: forward Euler, order 1, fixed step.
- ``heun_euler``: Heun's method with an embedded Euler estimate, 2(1).
- ``bs32``: Bogacki-Shampine 3(2), FSAL.
- ``rk4``: classic 4th-order Runge-Kutta, fixed step.
- ``rkf45``: Runge-Kutta-Fehlberg, 5th-order propagation with a 4th-order
  embedded estimate.
- ``dp54``: Dormand-Prince 5(4), FSAL, with the standard 4th-degree
  continuous extension.
"""

from __future__ import annotations

from rkivp.tableaus._tableau import Tableau

EULER = Tableau(
    name="euler",
    a=((0.0,),),
    b=(1.0,),
    c=(0.0,),
    order=1,
)

HEUN_EULER = Tableau(
    name="heun_euler",
    a=(
        (0.0, 0.0),
        (1.0, 0.0),
    ),
    b=(0.5, 0.5),
    c=(0.0, 1.0),
    order=2,
    b_hat=(1.0, 0.0),
    embedded_order=1,
)

BS32 = Tableau(
    name="bs32",
    a=(
        (0.0, 0.0, 0.0, 0.0),
        (1.0 / 2.0, 0.0, 0.0, 0.0),
        (0.0, 3.0 / 4.0, 0.0, 0.0),
        (2.0 / 9.0, 1.0 / 3.0, 4.0 / 9.0, 0.0),
    ),
    b=(2.0 / 9.0, 1.0 / 3.0, 4.0 / 9.0, 0.0),
    c=(0.0, 1.0 / 2.0, 3.0 / 4.0, 1.0),
    order=3,
    b_hat=(7.0 / 24.0, 1.0 / 4.0, 1.0 / 3.0, 1.0 / 8.0),
    embedded_order=2,
)

RK4 = Tableau(
    name="rk4",
    a=(
        (0.0, 0.0, 0.0, 0.0),
        (0.5, 0.0, 0.0, 0.0),
        (0.0, 0.5, 0.0, 0.0),
        (0.0, 0.0, 1.0, 0.0),
    ),
    b=(1.0 / 6.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 6.0),
    c=(0.0, 0.5, 0.5, 1.0),
    order=4,
)

RKF45 = Tableau(
    name="rkf45",
    a=(
        (0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
        (1.0 / 4.0, 0.0, 0.0, 0.0, 0.0, 0.0),
        (3.0 / 32.0, 9.0 / 32.0, 0.0, 0.0, 0.0, 0.0),
        (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0, 0.0, 0.0, 0.0),
        (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0, 0.0, 0.0),
        (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0, 0.0),
    ),
    b=(16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0, -9.0 / 50.0, 2.0 / 55.0),
    c=(0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0),
    order=5,
    b_hat=(25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0),
    embedded_order=4,
)

DP54 = Tableau(
    name="dp54",
    a=(
        (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
        (1.0 / 5.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
        (3.0 / 40.0, 9.0 / 40.0, 0.0, 0.0, 0.0, 0.0, 0.0),
        (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0, 0.0, 0.0, 0.0, 0.0),
        (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0,
         0.0, 0.0, 0.0),
        (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0,
         -5103.0 / 18656.0, 0.0, 0.0),
        (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0,
         11.0 / 84.0, 0.0),
    ),
    b=(35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0,
       11.0 / 84.0, 0.0),
    c=(0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0),
    order=5,
    b_hat=(5179.0 / 57600.0, 0.0, 7571.0 / 16695.0, 393.0 / 640.0,
           -92097.0 / 339200.0, 187.0 / 2100.0, 1.0 / 40.0),
    embedded_order=4,
    # Shampine's continuous extension: row i gives the coefficients of
    # theta, theta^2, theta^3, theta^4 multiplying stage i.
    dense=(
        (1.0, -8048581381.0 / 2820520608.0, 8663915743.0 / 2820520608.0,
         -12715105075.0 / 11282082432.0),
        (0.0, 0.0, 0.0, 0.0),
        (0.0, 131558114200.0 / 32700410799.0, -68118460800.0 / 10900136933.0,
         87487479700.0 / 32700410799.0),
        (0.0, -1754552775.0 / 470086768.0, 14199869525.0 / 1410260304.0,
         -10690763975.0 / 1880347072.0),
        (0.0, 127303824393.0 / 49829197408.0, -318862633887.0 / 49829197408.0,
         701980252875.0 / 199316789632.0),
        (0.0, -282668133.0 / 205662961.0, 2019193451.0 / 616988883.0,
         -1453857185.0 / 822651844.0),
        (0.0, 40617522.0 / 29380423.0, -110615467.0 / 29380423.0,
         69997945.0 / 29380423.0),
    ),
)

EXPLICIT_TABLEAUS = (EULER, HEUN_EULER, BS32, RK4, RKF45, DP54)
