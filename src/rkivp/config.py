"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype used
for every state, stage and error array produced by rkivp.  The default is
``jnp.float32``, matching JAX's own default.  Switching to ``jnp.float64``
automatically enables JAX's 64-bit mode (``jax_enable_x64``).

Tight tolerances (``abstol``/``reltol`` below roughly ``1e-6``) are only
meaningful in float64, so call ``set_dtype(jnp.float64)`` **before**
starting such a run.  The dtype is read once when a run starts and is
fixed for the lifetime of the resulting :class:`~rkivp.solution.Solution`.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_VALID_DTYPES = (jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64)

_dtype = jnp.float32


def set_dtype(dtype) -> None:
    """Set the module-wide float dtype for rkivp.

    If *dtype* is ``jnp.float64``, JAX's 64-bit mode is automatically
    enabled via ``jax.config.update("jax_enable_x64", True)``.

    Args:
        dtype: One of ``jnp.float16``, ``jnp.bfloat16``, ``jnp.float32``,
            or ``jnp.float64``.

    Raises:
        ValueError: If *dtype* is not a supported float type.
    """
    global _dtype
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: "
            f"jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64"
        )
    if dtype == jnp.float64:
        jax.config.update("jax_enable_x64", True)
    _dtype = dtype


def get_dtype():
    """Return the current module-wide float dtype.

    Returns:
        The active float dtype (default ``jnp.float32``).
    """
    return _dtype


def get_eps() -> float:
    """Return the machine epsilon of the active float dtype.

    Used for the finite-difference Jacobian increment and for deciding
    when a step lands on the end of the interval.

    Returns:
        float: Machine epsilon of :func:`get_dtype`.
    """
    return float(jnp.finfo(_dtype).eps)
