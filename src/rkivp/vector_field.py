"""Vector-field adapter.

Wraps the user's derivative callback ``fun(u, params, t) -> du/dt`` and an
optional Jacobian callback ``jac(u, params, t) -> d(du/dt)/du`` behind a
single invocation contract used by every stepper.  The parameter blob is
bundled with the callbacks in one immutable context object, so the
steppers never depend on closures over mutable state.

Calling the field (``field(u, t)``) and :meth:`VectorField.jacobian` only
cast to the module dtype (:func:`~rkivp.config.get_dtype`) and check
shapes, so both can be traced by ``jax.jit`` and ``jax.vmap``.  The
host-side :meth:`VectorField.evaluate` and :func:`check_finite` add the
finiteness check that raises
:class:`~rkivp._errors.InvalidEvaluationError`, which the driver turns
into a rejected step.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkivp._errors import InvalidEvaluationError
from rkivp.config import get_dtype, get_eps


def check_finite(values: ArrayLike, t: ArrayLike, what: str = "vector field") -> Array:
    """Return *values* unchanged if every entry is finite.

    Host-side only; must not be called under ``jax.jit``.

    Raises:
        InvalidEvaluationError: If *values* has a NaN or infinite entry.
    """
    values = jnp.asarray(values)
    if not bool(jnp.all(jnp.isfinite(values))):
        raise InvalidEvaluationError(float(t), what=what)
    return values


@dataclass(frozen=True)
class VectorField:
    """Derivative callback, optional Jacobian callback and parameters.

    Args:
        fun: Right-hand side ``fun(u, params, t) -> du/dt``. Must be
            deterministic and free of side effects.
        params: Opaque parameter blob passed unchanged to *fun* and *jac*.
        jac: Optional Jacobian ``jac(u, params, t) -> (n, n) matrix``. When
            ``None`` a forward-difference approximation is used.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp.vector_field import VectorField
        field = VectorField(lambda u, p, t: -p * u, params=2.0)
        field(jnp.array([1.0]), 0.0)  # [-2.0]
        ```
    """

    fun: Callable[[Array, Any, Array], ArrayLike]
    params: Any = None
    jac: Callable[[Array, Any, Array], ArrayLike] | None = None

    @property
    def has_jacobian(self) -> bool:
        """Whether an analytic Jacobian callback was supplied."""
        return self.jac is not None

    def __call__(self, u: ArrayLike, t: ArrayLike) -> Array:
        """Evaluate ``fun(u, params, t)``.

        Compatible with ``jax.jit``; non-finite entries are passed through.

        Args:
            u: State vector.
            t: Time.

        Returns:
            jax.Array: Derivative with the shape of *u*.

        Raises:
            ValueError: If the derivative shape differs from the state shape.
        """
        u = jnp.asarray(u, dtype=get_dtype())
        du = jnp.asarray(self.fun(u, self.params, t), dtype=get_dtype())
        if du.shape != u.shape:
            raise ValueError(
                f"Vector field returned shape {du.shape} for state shape {u.shape}"
            )
        return du

    def evaluate(self, u: ArrayLike, t: ArrayLike) -> Array:
        """Evaluate the field on the host and reject non-finite results.

        Raises:
            InvalidEvaluationError: If the derivative has non-finite entries.
            ValueError: If the derivative shape differs from the state shape.
        """
        return check_finite(self(u, t), t)

    def jacobian(
        self, u: ArrayLike, t: ArrayLike, f0: ArrayLike | None = None
    ) -> tuple[Array, int]:
        """Evaluate the Jacobian ``d fun / d u`` at ``(u, t)``.

        Uses the supplied callback when available, otherwise forward
        differences with increment ``sqrt(eps) * max(|u_j|, 1)``. Compatible
        with ``jax.jit``; use :func:`check_finite` on the host to reject a
        non-finite matrix.

        Args:
            u: State vector.
            t: Time.
            f0: ``fun(u, params, t)`` if already known; saves one evaluation
                of the finite-difference fallback.

        Returns:
            tuple: ``(J, nfev)`` where ``J`` has shape ``(n, n)`` and
            ``nfev`` is the number of vector-field evaluations spent.
        """
        dtype = get_dtype()
        u = jnp.asarray(u, dtype=dtype)
        n = u.shape[0]
        if self.jac is not None:
            J = jnp.asarray(self.jac(u, self.params, t), dtype=dtype)
            if J.shape != (n, n):
                raise ValueError(
                    f"Jacobian returned shape {J.shape}, expected {(n, n)}"
                )
            return J, 0

        nfev = 0
        if f0 is None:
            f0 = self(u, t)
            nfev += 1
        f0 = jnp.asarray(f0, dtype=dtype)
        steps = math.sqrt(get_eps()) * jnp.maximum(jnp.abs(u), 1.0)
        columns = []
        for j in range(n):
            u_pert = u.at[j].add(steps[j])
            # Use the increment actually representable in the dtype.
            h = u_pert[j] - u[j]
            columns.append((self(u_pert, t) - f0) / h)
            nfev += 1
        return jnp.stack(columns, axis=1), nfev
