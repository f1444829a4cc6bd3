"""Implicit Runge-Kutta stepper.

The stage derivatives of an implicit tableau are coupled,

.. math::

    K_i = f\\left(u_n + \\Delta t \\sum_j a_{ij} K_j,\\; t_n + c_i \\Delta t\\right),
    \\qquad i = 1..s,

so all ``s`` stages are solved simultaneously with a simplified Newton
iteration: the Jacobian ``J`` of the vector field is frozen at
``(t_n, u_n)`` and the ``sn x sn`` iteration matrix
``I - dt * kron(A, J)`` is LU-factored once per attempt.  Each iteration
solves for the stage correction ``dK`` and stops when its weighted RMS
norm (``dt * dK`` scaled by ``abstol + reltol * |u_n|``) drops below
``newton_tol``.

The iteration runs in a ``jax.lax.while_loop``, so the whole attempt can
be traced by ``jax.jit`` and ``jax.vmap``.  Failures are reported through
:attr:`~rkivp._types.StepResult.newton_status`: growth of the correction
norm between iterations (``DIVERGING``), a non-finite correction
(``SINGULAR``), a non-finite stage evaluation (``INVALID_EVALUATION``) or
exhausting ``newton_max_iters`` (``MAX_ITERATIONS``).

Once the stages converge the state and the embedded error estimate are
formed exactly as for explicit tableaus.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import jax.scipy.linalg as jsl
from jax import Array
from jax.typing import ArrayLike

from rkivp._types import NewtonStatus, StepResult
from rkivp.config import get_dtype
from rkivp.tableaus import Tableau
from rkivp.vector_field import VectorField

_ITERATING = -1


def newton_matrix(tableau: Tableau, J: ArrayLike, dt: ArrayLike) -> Array:
    """Return the stage-system iteration matrix ``I - dt * kron(A, J)``.

    Args:
        tableau: Runge-Kutta coefficients.
        J: Jacobian of the vector field, shape ``(n, n)``.
        dt: Step size.

    Returns:
        jax.Array: Matrix of shape ``(s*n, s*n)``.
    """
    dtype = get_dtype()
    J = jnp.asarray(J, dtype=dtype)
    A = jnp.asarray(tableau.A, dtype=dtype)
    size = tableau.stages * J.shape[0]
    return jnp.eye(size, dtype=dtype) - dt * jnp.kron(A, J)


def implicit_rk_step(
    field: VectorField,
    tableau: Tableau,
    t: ArrayLike,
    u: ArrayLike,
    dt: ArrayLike,
    *,
    jacobian: ArrayLike | None = None,
    k0: ArrayLike | None = None,
    abstol: float = 1e-6,
    reltol: float = 1e-3,
    newton_tol: float = 1e-2,
    newton_max_iters: int = 7,
) -> StepResult:
    """Compute one tentative implicit Runge-Kutta step.

    Compatible with ``jax.jit`` and ``jax.vmap``. Not compatible with
    reverse-mode ``jax.grad`` due to the internal ``lax.while_loop``.

    Args:
        field: Vector field to integrate.
        tableau: Tableau (implicit or explicit; explicit rows converge in
            one iteration).
        t: Current time ``t_n``.
        u: Current state ``u_n``.
        dt: Step size.
        jacobian: Jacobian at ``(t_n, u_n)`` if already known. Computed
            from *field* otherwise.
        k0: ``f(t_n, u_n)`` if already known.
        abstol: Absolute tolerance weighting the Newton correction norm.
        reltol: Relative tolerance weighting the Newton correction norm.
        newton_tol: Convergence threshold on the weighted correction norm.
        newton_max_iters: Maximum number of Newton iterations.

    Returns:
        StepResult: Tentative state, error estimate, stages, evaluation
        counters and the :class:`~rkivp._types.NewtonStatus` code. ``nfev``
        and ``newton_iters`` are integer arrays since they depend on the
        number of iterations run.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp.steppers.implicit import implicit_rk_step
        from rkivp.tableaus import BACKWARD_EULER
        from rkivp.vector_field import VectorField
        field = VectorField(lambda u, p, t: -u)
        result = implicit_rk_step(field, BACKWARD_EULER, 0.0, jnp.array([1.0]), 0.1)
        int(result.newton_status)  # 0, converged
        ```
    """
    dtype = get_dtype()
    t = jnp.asarray(t, dtype=dtype)
    u = jnp.asarray(u, dtype=dtype)
    dt = jnp.asarray(dt, dtype=dtype)
    s = tableau.stages
    n = u.shape[0]
    A = jnp.asarray(tableau.A, dtype=dtype)
    C = tableau.C

    nfev = 0
    njev = 0
    if k0 is None:
        f0 = field(u, t)
        nfev += 1
    else:
        f0 = jnp.asarray(k0, dtype=dtype)

    if jacobian is None:
        jacobian, fd_evals = field.jacobian(u, t, f0=f0)
        nfev += fd_evals
        njev += 1

    lu_piv = jsl.lu_factor(newton_matrix(tableau, jacobian, dt))
    scale = abstol + reltol * jnp.abs(u)

    # Rows of A that are all zero with c_i == 0 are the explicit first stage.
    frozen = [
        bool(C[i] == 0.0) and not bool((tableau.A[i] != 0.0).any())
        for i in range(s)
    ]
    evals_per_iter = s - sum(frozen)

    # Newton loop via lax.while_loop.
    # Carry: (iters, K, prev_norm, status)
    def cond_fn(carry):
        _iters, _K, _prev_norm, status = carry
        return status == _ITERATING

    def body_fn(carry):
        iters, K, prev_norm, _status = carry
        iters = iters + 1
        U = u[None, :] + dt * (A @ K)
        F = jnp.stack([
            f0 if frozen[i] else field(U[i], t + float(C[i]) * dt)
            for i in range(s)
        ])
        dK = jsl.lu_solve(lu_piv, -(K - F).reshape(-1)).reshape(s, n)
        norm = jnp.sqrt(jnp.mean(jnp.square(dt * dK / scale[None, :])))
        status = jnp.select(
            [
                ~jnp.all(jnp.isfinite(F)),
                ~jnp.all(jnp.isfinite(dK)),
                norm <= newton_tol,
                norm >= prev_norm,
                iters >= newton_max_iters,
            ],
            [
                int(NewtonStatus.INVALID_EVALUATION),
                int(NewtonStatus.SINGULAR),
                int(NewtonStatus.CONVERGED),
                int(NewtonStatus.DIVERGING),
                int(NewtonStatus.MAX_ITERATIONS),
            ],
            default=_ITERATING,
        ).astype(jnp.int32)
        return (iters, K + dK, norm, status)

    init_carry = (
        jnp.asarray(0, dtype=jnp.int32),
        jnp.tile(f0, (s, 1)),
        jnp.asarray(jnp.inf, dtype=dtype),
        jnp.asarray(_ITERATING, dtype=jnp.int32),
    )
    iters, K, _norm, status = jax.lax.while_loop(cond_fn, body_fn, init_carry)

    B = jnp.asarray(tableau.B, dtype=dtype)
    state = u + dt * (B @ K)
    if tableau.E is None:
        error = jnp.zeros_like(u)
    else:
        error = dt * (jnp.asarray(tableau.E, dtype=dtype) @ K)

    return StepResult(
        state=state,
        error=error,
        stages=K,
        nfev=nfev + evals_per_iter * iters,
        njev=njev,
        newton_iters=iters,
        newton_status=status,
    )
