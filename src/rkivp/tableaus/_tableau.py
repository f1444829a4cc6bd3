"""Butcher tableau type, tableau registry and linear-stability helpers.

A :class:`Tableau` is immutable static data: coefficients are stored as
Python tuples (the published rational values, cast once) together with
read-only ``numpy`` copies used by the steppers.  Tableaus are shared
read-only across every run that uses them.

The :class:`TableauRegistry` maps method names to tableaus.  It is an
ordinary immutable :class:`~collections.abc.Mapping`; the driver receives
one explicitly instead of consulting a process-wide table, so concurrent
runs can share it without locking.
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class Stability(Enum):
    """Linear-stability classification of a tableau."""

    NONE = "none"
    A_STABLE = "A-stable"
    L_STABLE = "L-stable"

    def __str__(self) -> str:
        return self.value


def _as_readonly(values, ndim: int) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, ndmin=ndim)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Tableau:
    """Coefficients of a Runge-Kutta method.

    Args:
        name: Registry identifier, e.g. ``"dp54"``.
        a: Coupling coefficients ``a[i][j]`` as an ``s x s`` nested tuple.
            Strictly lower-triangular for explicit methods.
        b: Propagating weights (length ``s``).
        c: Abscissae (length ``s``).
        order: Order of the propagating solution.
        implicit: ``True`` if any ``a[i][j]`` with ``j >= i`` is nonzero.
        stability: Linear-stability class.
        b_hat: Embedded weights, or ``None`` for fixed-step methods.
        embedded_order: Order of the embedded solution.
        dense: Optional continuous-extension coefficients, shape ``s x d``.
            The interpolant is ``u_n + dt * sum_i k_i * sum_j dense[i][j] * theta**(j+1)``.

    Raises:
        ValueError: If the shapes are inconsistent or the ``implicit`` tag
            contradicts ``a``.
    """

    name: str
    a: tuple
    b: tuple
    c: tuple
    order: int
    implicit: bool = False
    stability: Stability = Stability.NONE
    b_hat: tuple | None = None
    embedded_order: int | None = None
    dense: tuple | None = None
    A: np.ndarray = field(init=False, repr=False, compare=False)
    B: np.ndarray = field(init=False, repr=False, compare=False)
    C: np.ndarray = field(init=False, repr=False, compare=False)
    E: np.ndarray | None = field(init=False, repr=False, compare=False)
    P: np.ndarray | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        A = _as_readonly(self.a, 2)
        B = _as_readonly(self.b, 1)
        C = _as_readonly(self.c, 1)
        s = B.shape[0]
        if A.shape != (s, s) or C.shape != (s,):
            raise ValueError(
                f"Tableau '{self.name}': a must be {s}x{s} and c length {s}, "
                f"got a{A.shape} and c{C.shape}"
            )
        has_implicit_coupling = bool(np.any(np.triu(A) != 0.0))
        if has_implicit_coupling != self.implicit:
            raise ValueError(
                f"Tableau '{self.name}' is tagged implicit={self.implicit} "
                f"but its coefficient matrix says otherwise"
            )
        if (self.b_hat is None) != (self.embedded_order is None):
            raise ValueError(
                f"Tableau '{self.name}': b_hat and embedded_order must be "
                f"given together"
            )
        E = None
        if self.b_hat is not None:
            b_hat = _as_readonly(self.b_hat, 1)
            if b_hat.shape != (s,):
                raise ValueError(
                    f"Tableau '{self.name}': b_hat must have length {s}"
                )
            E = _as_readonly(B - b_hat, 1)
        P = None
        if self.dense is not None:
            P = _as_readonly(self.dense, 2)
            if P.shape[0] != s:
                raise ValueError(
                    f"Tableau '{self.name}': dense must have {s} rows"
                )
        object.__setattr__(self, "A", A)
        object.__setattr__(self, "B", B)
        object.__setattr__(self, "C", C)
        object.__setattr__(self, "E", E)
        object.__setattr__(self, "P", P)

    @property
    def stages(self) -> int:
        """Number of stages ``s``."""
        return self.B.shape[0]

    @property
    def is_adaptive(self) -> bool:
        """Whether the tableau carries embedded weights."""
        return self.E is not None

    @property
    def error_order(self) -> int:
        """Order used in the step-size exponent ``1 / (order + 1)``.

        This is the order of the local error estimate, i.e. the lower of
        the propagating and embedded orders.
        """
        if self.embedded_order is None:
            return self.order
        return min(self.order, self.embedded_order)

    @property
    def first_stage_explicit(self) -> bool:
        """Whether stage 0 is ``f(t_n, u_n)``, so it can reuse the last end derivative."""
        return self.C[0] == 0.0 and not np.any(self.A[0] != 0.0)

    @property
    def is_fsal(self) -> bool:
        """Whether the last stage is evaluated at ``(t_{n+1}, u_{n+1})``."""
        return (
            not self.implicit
            and self.C[-1] == 1.0
            and bool(np.all(self.A[-1] == self.B))
        )


def stability_function(tableau: Tableau, z) -> np.ndarray:
    """Evaluate the linear stability function of *tableau*.

    .. math::

        R(z) = 1 + z\\, b^T (I - z A)^{-1} \\mathbf{1}

    This is the exact one-step multiplier of the method applied to the
    test equation ``u' = lambda u`` with ``z = dt * lambda``.

    Args:
        tableau: Method coefficients.
        z: Complex scalar or array.

    Returns:
        numpy.ndarray: ``R(z)`` with the shape of *z* (complex). Points where
        ``I - zA`` is singular map to ``inf``.
    """
    z_arr = np.asarray(z, dtype=np.complex128)
    s = tableau.stages
    eye = np.eye(s, dtype=np.complex128)
    ones = np.ones(s, dtype=np.complex128)
    out = np.empty(z_arr.shape, dtype=np.complex128)
    for idx, zi in np.ndenumerate(z_arr):
        try:
            x = np.linalg.solve(eye - zi * tableau.A, ones)
        except np.linalg.LinAlgError:
            out[idx] = np.inf
            continue
        out[idx] = 1.0 + zi * (tableau.B @ x)
    return out


def real_stability_boundary(tableau: Tableau, x_max: float = 100.0) -> float:
    """Return the extent of the stability region along the negative real axis.

    Finds the largest ``x`` such that ``|R(-y)| <= 1`` for all
    ``0 <= y <= x``. A- and L-stable tableaus return ``inf``.

    Args:
        tableau: Method coefficients.
        x_max: Search limit; tableaus stable beyond it return ``inf``.

    Returns:
        float: Stability boundary ``x``.
    """
    if tableau.stability is not Stability.NONE:
        return math.inf

    def stable(x):
        return abs(stability_function(tableau, -x)) <= 1.0 + 1e-12

    step = 0.05
    lo = 0.0
    while lo < x_max and stable(lo + step):
        lo += step
    if lo >= x_max:
        return math.inf
    hi = lo + step
    for _ in range(60):
        mid = 0.5 * (lo + hi)
        if stable(mid):
            lo = mid
        else:
            hi = mid
    return lo


class TableauRegistry(Mapping):
    """Immutable mapping from method name to :class:`Tableau`.

    Args:
        tableaus: Tableaus to register, keyed by their ``name``.

    Raises:
        ValueError: If two tableaus share a name.

    Examples:
        ```python
        from rkivp.tableaus import DEFAULT_REGISTRY
        DEFAULT_REGISTRY["dp54"].order
        ```
    """

    def __init__(self, tableaus=()):
        entries = {}
        for tab in tableaus:
            if tab.name in entries:
                raise ValueError(f"Duplicate tableau name '{tab.name}'")
            entries[tab.name] = tab
        self._entries = entries
        self._boundaries = {
            name: real_stability_boundary(tab) for name, tab in entries.items()
        }

    def __getitem__(self, name: str) -> Tableau:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(
                f"Unknown method '{name}'. Available: {sorted(self._entries)}"
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"TableauRegistry({sorted(self._entries)})"

    def stability_boundary(self, name: str) -> float:
        """Return the precomputed :func:`real_stability_boundary` of *name*."""
        return self._boundaries[self[name].name]

    def with_tableau(self, tableau: Tableau) -> TableauRegistry:
        """Return a new registry with *tableau* added (or replaced)."""
        entries = dict(self._entries)
        entries[tableau.name] = tableau
        return TableauRegistry(entries.values())
