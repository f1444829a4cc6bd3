# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "rkivp"]
#
# [tool.uv.sources]
# rkivp = { path = ".." }
# ///
"""Integrate the Van der Pol oscillator with explicit, implicit and automatic methods.

For large ``mu`` the oscillator alternates between slow drifts and sharp
relaxation jumps, which makes it stiff: explicit methods are forced into
tiny, stability-limited steps while implicit methods are not. The script
runs the same problem with each requested method and reports step counts,
vector-field evaluations, method switches and the final state.

Requires rkivp to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/van_der_pol.py [OPTIONS]

Examples:
    # Mildly stiff, all three strategies
    uv run examples/van_der_pol.py --mu 10

    # Strongly stiff, automatic switching only
    uv run examples/van_der_pol.py --mu 1000 --method auto --duration 3000

    # Dense output on a regular grid
    uv run examples/van_der_pol.py --mu 5 --samples 11
"""

import logging
import time
from typing import Annotated

import jax.numpy as jnp
import typer

from rkivp import IntegratorConfig, integrate, set_dtype

set_dtype(jnp.float64)


def van_der_pol(u, mu, t):
    return jnp.array([u[1], mu * (1.0 - u[0] ** 2) * u[1] - u[0]])


def van_der_pol_jac(u, mu, t):
    return jnp.array(
        [
            [0.0, 1.0],
            [-2.0 * mu * u[0] * u[1] - 1.0, mu * (1.0 - u[0] ** 2)],
        ]
    )


def main(
    mu: Annotated[float, typer.Option(help="Nonlinear damping coefficient")] = 10.0,
    duration: Annotated[float, typer.Option(help="Length of the time interval")] = 20.0,
    method: Annotated[
        list[str] | None,
        typer.Option(help="Method(s) to run; repeat the option for several"),
    ] = None,
    tol: Annotated[float, typer.Option(help="abstol and reltol")] = 1e-6,
    analytic_jacobian: Annotated[
        bool, typer.Option(help="Supply the analytic Jacobian")
    ] = True,
    samples: Annotated[
        int, typer.Option(help="Print dense output at this many points (0 = off)")
    ] = 0,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging")] = False,
) -> None:
    """Compare integration methods on the Van der Pol oscillator."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    methods = method or ["dp54", "trbdf2", "auto"]
    u0 = jnp.array([2.0, 0.0])
    jac = van_der_pol_jac if analytic_jacobian else None

    print(f"Van der Pol, mu={mu}, t in [0, {duration}], tol={tol:g}")
    for name in methods:
        config = IntegratorConfig(abstol=tol, reltol=tol, method=name)
        t0 = time.perf_counter()
        sol = integrate(van_der_pol, u0, (0.0, duration), mu, jac=jac, config=config)
        elapsed = time.perf_counter() - t0

        stats = sol.stats
        print(f"\n── {name} ──")
        print(f"  Status:     {sol.status_string} ({elapsed:.2f}s)")
        print(f"  Steps:      {stats.accepted} accepted, {stats.rejected} rejected")
        for cause, count in stats.rejected_by.items():
            if count:
                print(f"    {cause.value:<22} {count}")
        print(f"  Evals:      nfev={stats.nfev}, njev={stats.njev}, "
              f"newton={stats.newton_iters}")
        if stats.switches:
            used = sorted(set(sol.methods))
            print(f"  Switches:   {stats.switches} ({', '.join(used)})")
        if len(sol):
            u = sol[-1].u_end
            print(f"  Final:      t={sol.t_final:g}, u=({float(u[0]):.6f}, {float(u[1]):.6f})")

        if samples > 0 and len(sol):
            ts = jnp.linspace(sol.t0, sol.t_final, samples)
            for t, u in zip(ts, sol(ts)):
                print(f"    t={float(t):10.4f}  u=({float(u[0]): .6f}, {float(u[1]): .6f})")

    print("\nDone.")


if __name__ == "__main__":
    typer.run(main)
