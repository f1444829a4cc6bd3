"""Stiffness detection and explicit/implicit method switching.

A stiffness detector is a pluggable policy consulted by the driver after
every step attempt.  It sees one :class:`StepObservation` per attempt and
answers with a :class:`~rkivp._types.SwitchSignal`.

:class:`StiffnessDetector` implements the default policy:

- While an explicit method is active, it keeps a sliding window of recent
  attempts and records which were rejected on stability grounds. When the
  fraction of stability rejections in a full-enough window exceeds
  ``rejection_threshold``, or the Jacobian stiffness ratio exceeds
  ``max_condition``, it signals :attr:`SwitchSignal.TO_IMPLICIT`.
- While an implicit method is active, it counts consecutive accepted steps
  whose ``dt * |lambda|`` would also be comfortably stable for the explicit
  method. After ``window`` such steps it signals
  :attr:`SwitchSignal.TO_EXPLICIT`.

The policy object itself is immutable and may be shared across runs; all
per-run bookkeeping lives in the :class:`DetectorState` returned by
:meth:`StiffnessDetector.new_state`.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np
from jax.typing import ArrayLike

from rkivp._types import RejectCause, SwitchSignal

logger = logging.getLogger(__name__)


class SpectralEstimate(NamedTuple):
    """Eigenvalue summary of a Jacobian.

    Attributes:
        dominant: Largest-magnitude eigenvalue with negative real part (or
            largest-magnitude eigenvalue when none decays).
        stiffness_ratio: ``max |Re lambda| / min |Re lambda|`` over decaying
            eigenvalues; 1.0 when fewer than two decay.
    """

    dominant: complex
    stiffness_ratio: float


def spectral_estimate(J: ArrayLike) -> SpectralEstimate | None:
    """Estimate the dominant eigenvalue and stiffness ratio of a Jacobian.

    Computed on the host with ``numpy.linalg.eigvals``.

    Args:
        J: Jacobian matrix, shape ``(n, n)``.

    Returns:
        SpectralEstimate or None: ``None`` for an empty or non-finite matrix.
    """
    mat = np.asarray(J, dtype=np.float64)
    if mat.size == 0 or not np.all(np.isfinite(mat)):
        return None
    eigs = np.linalg.eigvals(mat)
    decaying = eigs[eigs.real < 0.0]
    pool = decaying if decaying.size else eigs
    dominant = complex(pool[np.argmax(np.abs(pool))])
    ratio = 1.0
    if decaying.size >= 2:
        re = np.abs(decaying.real)
        ratio = float(re.max() / re.min())
    return SpectralEstimate(dominant=dominant, stiffness_ratio=ratio)


class StepObservation(NamedTuple):
    """What the driver reports to the detector after each attempt.

    Attributes:
        implicit: Whether the active stepper is implicit.
        accepted: Whether the attempt was committed.
        cause: Rejection cause, ``None`` when accepted.
        dt: Step size of the attempt.
        spectrum: Jacobian eigenvalue summary at ``t_n``, if one was computed.
        explicit_boundary: Real stability boundary of the explicit method
            the driver would switch back to.
    """

    implicit: bool
    accepted: bool
    cause: RejectCause | None
    dt: float
    spectrum: SpectralEstimate | None = None
    explicit_boundary: float = math.inf


@dataclass
class DetectorState:
    """Per-run bookkeeping of :class:`StiffnessDetector`."""

    window: deque = field(default_factory=deque)
    nonstiff_steps: int = 0


@dataclass(frozen=True)
class StiffnessDetector:
    """Default rejection-rate / spectral stiffness policy.

    Args:
        window: Number of recent explicit attempts considered, and number
            of consecutive non-stiff implicit steps required to switch back.
        rejection_threshold: Fraction of stability rejections in the window
            that triggers a switch to the implicit method.
        min_samples: Attempts required in the window before the rate is
            trusted.
        max_condition: Stiffness-ratio bound that triggers a switch.
        nonstiff_fraction: An implicit step counts as non-stiff when
            ``dt * |lambda| < nonstiff_fraction * explicit_boundary``.
    """

    window: int = 20
    rejection_threshold: float = 0.2
    min_samples: int = 5
    max_condition: float = 1e6
    nonstiff_fraction: float = 0.5

    def __post_init__(self) -> None:
        if self.window < 1:
            raise ValueError(f"window must be >= 1, got {self.window}")
        if not 0.0 < self.rejection_threshold <= 1.0:
            raise ValueError(
                f"rejection_threshold must be in (0, 1], got {self.rejection_threshold}"
            )
        if not 0.0 < self.nonstiff_fraction <= 1.0:
            raise ValueError(
                f"nonstiff_fraction must be in (0, 1], got {self.nonstiff_fraction}"
            )

    def new_state(self) -> DetectorState:
        """Return fresh per-run bookkeeping."""
        return DetectorState(window=deque(maxlen=self.window))

    def observe(self, state: DetectorState, obs: StepObservation) -> SwitchSignal:
        """Record one attempt and return the switching recommendation.

        Args:
            state: Bookkeeping from :meth:`new_state`; updated in place.
            obs: Outcome of the attempt.

        Returns:
            SwitchSignal: Recommendation for the driver.
        """
        if obs.implicit:
            return self._observe_implicit(state, obs)
        return self._observe_explicit(state, obs)

    def _observe_explicit(
        self, state: DetectorState, obs: StepObservation
    ) -> SwitchSignal:
        if obs.cause in (RejectCause.INVALID_EVALUATION, RejectCause.NONLINEAR_DIVERGENCE):
            return SwitchSignal.NONE
        state.window.append(obs.cause is RejectCause.STABILITY)
        if obs.spectrum is not None and obs.spectrum.stiffness_ratio > self.max_condition:
            logger.debug(
                "Stiffness ratio %.3g exceeds %.3g", obs.spectrum.stiffness_ratio,
                self.max_condition,
            )
            self._clear(state)
            return SwitchSignal.TO_IMPLICIT
        if len(state.window) >= self.min_samples:
            rate = sum(state.window) / len(state.window)
            if rate > self.rejection_threshold:
                logger.debug("Stability rejection rate %.2f over %d attempts",
                             rate, len(state.window))
                self._clear(state)
                return SwitchSignal.TO_IMPLICIT
        return SwitchSignal.NONE

    def _observe_implicit(
        self, state: DetectorState, obs: StepObservation
    ) -> SwitchSignal:
        if not obs.accepted:
            return SwitchSignal.NONE
        spectrum = obs.spectrum
        if spectrum is None or spectrum.stiffness_ratio > self.max_condition:
            state.nonstiff_steps = 0
            return SwitchSignal.NONE
        z = obs.dt * abs(spectrum.dominant) if spectrum.dominant.real < 0.0 else 0.0
        if z < self.nonstiff_fraction * obs.explicit_boundary:
            state.nonstiff_steps += 1
        else:
            state.nonstiff_steps = 0
        if state.nonstiff_steps >= self.window:
            self._clear(state)
            return SwitchSignal.TO_EXPLICIT
        return SwitchSignal.NONE

    @staticmethod
    def _clear(state: DetectorState) -> None:
        state.window.clear()
        state.nonstiff_steps = 0
