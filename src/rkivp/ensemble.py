"""Concurrent integration of independent problems.

A single run is a strictly sequential chain of steps, so parallelism is
only exploited across runs: each :class:`Problem` is integrated on its own
worker thread with its own controller state and solution. Workers share
only read-only data (the tableau registry, the stiffness policy and the
configuration).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, NamedTuple

from jax.typing import ArrayLike

from rkivp.driver import Integrator, IntegratorConfig
from rkivp.solution import Solution

logger = logging.getLogger(__name__)


class Problem(NamedTuple):
    """One independent initial value problem.

    Attributes:
        fun: Vector field ``fun(u, params, t)``.
        u0: Initial state.
        t_span: ``(t0, tf)``.
        params: Parameter blob for *fun* and *jac*.
        jac: Optional Jacobian ``jac(u, params, t)``.
    """

    fun: Callable
    u0: ArrayLike
    t_span: tuple[float, float]
    params: Any = None
    jac: Callable | None = None


def integrate_ensemble(
    problems: Iterable[Problem],
    config: IntegratorConfig | None = None,
    *,
    integrator: Integrator | None = None,
    max_workers: int | None = None,
    cancel: Any = None,
) -> list[Solution]:
    """Integrate independent problems concurrently.

    Args:
        problems: Problems to integrate.
        config: Options shared by every run.
        integrator: Driver (registry and stiffness policy) shared by every
            run. Defaults to ``Integrator()``.
        max_workers: Thread-pool size; ``None`` uses the executor default.
        cancel: Cancellation signal checked by every run once per committed
            step.

    Returns:
        list[Solution]: One solution per problem, in input order.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkivp.ensemble import Problem, integrate_ensemble
        problems = [
            Problem(lambda u, p, t: -p * u, jnp.array([1.0]), (0.0, 1.0), params=k)
            for k in (0.5, 1.0, 2.0)
        ]
        solutions = integrate_ensemble(problems, max_workers=3)
        ```
    """
    problems = list(problems)
    if integrator is None:
        integrator = Integrator()

    def run(problem: Problem) -> Solution:
        return integrator.integrate(
            problem.fun,
            problem.u0,
            problem.t_span,
            problem.params,
            jac=problem.jac,
            config=config,
            cancel=cancel,
        )

    logger.info("Integrating ensemble of %d problems", len(problems))
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(run, problems))
