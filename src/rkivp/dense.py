"""Dense output: continuous interpolation inside committed steps.

Each committed :class:`~rkivp.solution.StepRecord` carries enough data to
evaluate a polynomial in the local variable ``theta = (t - t_n) / dt``,
``theta`` in ``[0, 1]``:

- tableaus with continuous-extension coefficients (``Tableau.P``) use
  ``u_n + dt * sum_i k_i * sum_j P[i][j] * theta**(j+1)``;
- otherwise a Hermite polynomial of degree ``min(order, 3)``: linear for
  first-order methods, quadratic through ``u_n``, ``f_n`` and ``u_{n+1}``
  for second-order methods, and the C1 cubic through ``u_n``, ``f_n``,
  ``u_{n+1}``, ``f_{n+1}`` for higher orders.

All forms are written so that ``theta = 1`` reproduces the stored end
state exactly.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax import Array

from rkivp.config import get_dtype


def interpolant_degree(tableau) -> int:
    """Return the polynomial degree used for *tableau*'s dense output."""
    if tableau.P is not None:
        return tableau.P.shape[1]
    return min(tableau.order, 3)


def evaluate_step(record, theta: float) -> Array:
    """Evaluate the dense-output polynomial of one committed step.

    Args:
        record: A :class:`~rkivp.solution.StepRecord`.
        theta: Local coordinate in ``[0, 1]``.

    Returns:
        jax.Array: Interpolated state.
    """
    dtype = get_dtype()
    tableau = record.tableau
    u0, u1 = record.u, record.u_end
    dt = record.dt

    if tableau.P is not None:
        powers = np.array(
            [theta ** (j + 1) - 1.0 for j in range(tableau.P.shape[1])]
        )
        weights = jnp.asarray(tableau.P @ powers, dtype=dtype)
        return u1 + dt * (weights @ record.stages)

    f0, f1 = record.f_start, record.f_end
    degree = min(tableau.order, 3)
    if degree == 1:
        return (1.0 - theta) * u0 + theta * u1
    if degree == 2:
        return (
            (1.0 - theta**2) * u0
            + theta * (1.0 - theta) * dt * f0
            + theta**2 * u1
        )

    # Cubic Hermite basis.
    h00 = (1.0 + 2.0 * theta) * (1.0 - theta) ** 2
    h10 = theta * (1.0 - theta) ** 2 * dt
    h01 = theta**2 * (3.0 - 2.0 * theta)
    h11 = theta**2 * (theta - 1.0) * dt
    return h00 * u0 + h10 * f0 + h01 * u1 + h11 * f1
