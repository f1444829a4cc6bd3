"""Exception types raised inside rkivp.

Only :class:`OutOfDomainError` and plain ``ValueError``/``KeyError`` for
misuse ever reach the caller.  :class:`InvalidEvaluationError` and
:class:`NonlinearDivergenceError` are raised on the host by
:func:`~rkivp.steppers.check_step` (from the status a traced stepper
reports) and resolved inside the integration loop by rejecting the
attempt; fatal conditions are reported through
:attr:`~rkivp.solution.Solution.status` instead of being raised.
"""

from __future__ import annotations


class RKIVPError(Exception):
    """Base class for all rkivp errors."""


class InvalidEvaluationError(RKIVPError):
    """The vector field (or its Jacobian) returned a non-finite value."""

    def __init__(self, t: float, what: str = "vector field"):
        self.t = t
        super().__init__(f"{what} returned a non-finite value at t={t!r}")


class NonlinearDivergenceError(RKIVPError):
    """The Newton iteration of an implicit stage solve did not converge.

    Attributes:
        iterations: Number of Newton iterations performed before giving up.
        reason: ``"max_iterations"``, ``"diverging"`` or ``"singular"``.
    """

    def __init__(self, iterations: int, reason: str):
        self.iterations = iterations
        self.reason = reason
        super().__init__(
            f"Newton iteration failed after {iterations} iterations ({reason})"
        )


class OutOfDomainError(RKIVPError, ValueError):
    """A dense-output query fell outside the solved interval."""

    def __init__(self, t: float, t0: float, t_final: float):
        self.t = t
        self.t0 = t0
        self.t_final = t_final
        super().__init__(
            f"t={t!r} is outside the solved interval [{t0!r}, {t_final!r}]"
        )
