"""Explicit Runge-Kutta stepper.

Stages are computed sequentially; stage *i* only uses stages ``j < i``:

.. math::

    k_i = f\\left(u_n + \\Delta t \\sum_{j<i} a_{ij} k_j,\\; t_n + c_i \\Delta t\\right)

The propagated state is :math:`u_{n+1} = u_n + \\Delta t \\sum_i b_i k_i`
and, when the tableau carries embedded weights, the local error estimate
is :math:`u_{n+1} - \\hat u_{n+1} = \\Delta t \\sum_i (b_i - \\hat b_i) k_i`.

The step is a pure function of its inputs and can be traced by ``jax.jit``
and ``jax.vmap``; the tableau coefficients are static numpy constants.
Non-finite stage values are returned as they are, for the driver to
reject on the host.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkivp._types import StepResult
from rkivp.config import get_dtype
from rkivp.tableaus import Tableau
from rkivp.vector_field import VectorField


def _combine(u: Array, dt: Array, coeffs, stages) -> Array:
    """Return ``u + dt * sum(coeffs[j] * stages[j])`` skipping zero coefficients."""
    acc = None
    for cj, kj in zip(coeffs, stages):
        if cj != 0.0:
            term = float(cj) * kj
            acc = term if acc is None else acc + term
    if acc is None:
        return u
    return u + dt * acc


def explicit_rk_step(
    field: VectorField,
    tableau: Tableau,
    t: ArrayLike,
    u: ArrayLike,
    dt: ArrayLike,
    k0: ArrayLike | None = None,
) -> StepResult:
    """Compute one tentative explicit Runge-Kutta step.

    Args:
        field: Vector field to integrate.
        tableau: Explicit tableau.
        t: Current time ``t_n``.
        u: Current state ``u_n``.
        dt: Step size.
        k0: ``f(t_n, u_n)`` if already known (end derivative of the
            previous step). Only used when the first stage is explicit.

    Returns:
        StepResult: Tentative state, error estimate and stage derivatives.

    Raises:
        ValueError: If *tableau* is implicit.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp.steppers.explicit import explicit_rk_step
        from rkivp.tableaus import RK4
        from rkivp.vector_field import VectorField
        field = VectorField(lambda u, p, t: -u)
        explicit_rk_step(field, RK4, 0.0, jnp.array([1.0]), 0.1).state
        ```
    """
    if tableau.implicit:
        raise ValueError(f"Tableau '{tableau.name}' is implicit")

    dtype = get_dtype()
    t = jnp.asarray(t, dtype=dtype)
    u = jnp.asarray(u, dtype=dtype)
    dt = jnp.asarray(dt, dtype=dtype)

    A, C = tableau.A, tableau.C
    nfev = 0
    stages = []
    for i in range(tableau.stages):
        if i == 0 and k0 is not None and tableau.first_stage_explicit:
            stages.append(jnp.asarray(k0, dtype=dtype))
            continue
        u_stage = _combine(u, dt, A[i, :i], stages)
        stages.append(field(u_stage, t + float(C[i]) * dt))
        nfev += 1

    state = _combine(u, dt, tableau.B, stages)
    if tableau.E is None:
        error = jnp.zeros_like(u)
    else:
        error = _combine(jnp.zeros_like(u), dt, tableau.E, stages)

    return StepResult(
        state=state,
        error=error,
        stages=jnp.stack(stages),
        nfev=nfev,
    )
