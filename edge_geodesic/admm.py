"""
ADMM repair of the per-edge difference field.

Unknowns are one scalar ``X`` per edge. Gathering ``X`` through ``S`` gives
three values per face (``SX``); the splitting variable ``Y`` carries the
same layout and is constrained, face by face, to ``Q . Y_f = 0``, i.e. the
signed differences around every triangle sum to zero. The objective pulls
``X`` towards the targets ``Z`` while the scaled dual ``D`` enforces
``Y = SX``:

    Y  <- P_Q (SX_prev - D)
    X  <- argmin  sum_rows  ||X_S - Z||^2 + rho ||X_S - Y - D||^2
    SX <- X[S]
    D  <- D + Y - SX

``SX`` is double buffered; the residuals compare the two generations before
the buffers flip.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import torch
from torch import Tensor

from .incidence import IncidenceTables, initial_edge_values
from .logger import ConvergenceLogger, null_logger
from .parallel import ForkJoinPool


class PingPong:
    """Two equally shaped buffers addressed as ``current``/``previous`` by parity."""

    def __init__(self, first: Tensor, second: Tensor) -> None:
        self._buffers = (first, second)
        self.parity = 0

    @property
    def current(self) -> Tensor:
        return self._buffers[self.parity]

    @property
    def previous(self) -> Tensor:
        return self._buffers[1 - self.parity]

    def flip(self) -> None:
        self.parity = 1 - self.parity


@dataclass
class ADMMState:
    X: Tensor  # (nE,)
    Y: Tensor  # (3 nF,)
    D: Tensor  # (3 nF,)
    SX: PingPong
    penalty: float
    primal_threshold: float
    dual_threshold: float
    iteration: int = 0
    primal_residual_sqr: float = 0.0
    dual_residual_sqr: float = 0.0
    converged: bool = False
    finished: bool = False
    history: List[Tuple[int, float, float]] = field(default_factory=list)


@dataclass
class ADMMResult:
    X: Tensor
    iterations: int
    converged: bool
    primal_residual_sqr: float
    dual_residual_sqr: float
    history: List[Tuple[int, float, float]]


def _gather(X: Tensor, S: Tensor, out: Tensor, start: int, stop: int) -> None:
    out[3 * start:3 * stop] = X[S[start:stop]].reshape(-1)


@torch.no_grad()
def init_admm_state(
    tables: IncidenceTables,
    *,
    penalty: float,
    eps: float,
    pool: Optional[ForkJoinPool] = None,
) -> ADMMState:
    """Start from the averaged targets; both residual thresholds are ``eps**2``."""

    pool = pool if pool is not None else ForkJoinPool(1)
    Z = tables.Z
    n_rows = Z.numel()
    X = initial_edge_values(tables, pool)
    SX = PingPong(torch.zeros_like(Z), torch.zeros_like(Z))
    pool.parallel_for(tables.n_faces, lambda a, b: _gather(X, tables.S, SX.previous, a, b))
    return ADMMState(
        X=X,
        Y=torch.zeros(n_rows, dtype=Z.dtype, device=Z.device),
        D=torch.zeros(n_rows, dtype=Z.dtype, device=Z.device),
        SX=SX,
        penalty=float(penalty),
        primal_threshold=float(eps) * float(eps),
        dual_threshold=float(eps) * float(eps),
    )


def update_Y(state: ADMMState, tables: IncidenceTables, pool: ForkJoinPool) -> None:
    prev = state.SX.previous
    D = state.D
    Y = state.Y
    Q = tables.Q

    def body(start: int, stop: int) -> None:
        y = (prev[3 * start:3 * stop] - D[3 * start:3 * stop]).view(-1, 3)
        q = Q[start:stop]
        proj = (q * y).sum(dim=1, keepdim=True) / 3.0
        Y[3 * start:3 * stop] = (y - proj * q).reshape(-1)

    pool.parallel_for(tables.n_faces, body)


def update_X(state: ADMMState, tables: IncidenceTables, pool: ForkJoinPool) -> None:
    rho = state.penalty
    Y, D, Z, X = state.Y, state.D, tables.Z, state.X

    def body(start: int, stop: int) -> None:
        r = tables.edge_rows[start:stop]
        valid = r >= 0
        safe = r.clamp_min(0)
        terms = rho * (Y[safe] + D[safe]) + Z[safe]
        terms = torch.where(valid, terms, torch.zeros((), dtype=terms.dtype, device=terms.device))
        n = tables.edge_row_count[start:stop].to(terms.dtype)
        X[start:stop] = terms.sum(dim=1) / ((rho + 1.0) * n)

    pool.parallel_for(tables.n_edges, body)


def update_dual_variables(
    state: ADMMState,
    tables: IncidenceTables,
    pool: ForkJoinPool,
    check_frequency: int,
) -> bool:
    """Gather ``SX``, optionally measure residuals, update ``D``; returns whether residuals were measured."""

    current = state.SX.current
    previous = state.SX.previous
    Y, D = state.Y, state.D
    rho = state.penalty
    pool.parallel_for(tables.n_faces, lambda a, b: _gather(state.X, tables.S, current, a, b))

    measure = (state.iteration + 1) % check_frequency == 0

    def primal() -> float:
        return float(((Y - current) ** 2).sum())

    def dual() -> float:
        return float(((current - previous) ** 2).sum()) * rho * rho

    def dual_step() -> None:
        D.add_(Y - current)

    # The reductions only read Y/SX; the dual step only writes D.
    results = pool.sections(primal if measure else None, dual if measure else None, dual_step)
    if measure:
        state.primal_residual_sqr, state.dual_residual_sqr = float(results[0]), float(results[1])
    return measure


@torch.no_grad()
def compute_integrable_gradients(
    state: ADMMState,
    tables: IncidenceTables,
    *,
    max_iter: int,
    check_frequency: int,
    output_frequency: int,
    pool: Optional[ForkJoinPool] = None,
    logger: Optional[ConvergenceLogger] = None,
) -> ADMMResult:
    """Iterate until both squared residuals fall below their thresholds or ``max_iter``."""

    pool = pool if pool is not None else ForkJoinPool(1)
    logger = logger or null_logger()
    logger.open_table("admm", ["iteration", "primal", "dual", "primal_threshold", "dual_threshold"])

    state.finished = False
    state.converged = False
    while not state.finished:
        update_Y(state, tables, pool)
        update_X(state, tables, pool)
        measured = update_dual_variables(state, tables, pool, check_frequency)

        state.iteration += 1
        state.converged = measured and (
            state.primal_residual_sqr <= state.primal_threshold
            and state.dual_residual_sqr <= state.dual_threshold
        )
        state.finished = state.converged or state.iteration >= max_iter
        if measured:
            state.history.append((state.iteration, state.primal_residual_sqr, state.dual_residual_sqr))
            logger.log(
                "admm",
                state.iteration,
                {
                    "primal": state.primal_residual_sqr,
                    "dual": state.dual_residual_sqr,
                    "primal_threshold": state.primal_threshold,
                    "dual_threshold": state.dual_threshold,
                },
            )

        if state.converged:
            logger.info("Solver converged.")
        elif state.finished:
            logger.info("Maximum number of iterations reached.")
        if (measured and state.iteration % output_frequency == 0) or state.finished:
            logger.info(f"Iteration {state.iteration}:")
            logger.info(
                f"Primal residual squared norm: {state.primal_residual_sqr:.6g},  "
                f"threshold: {state.primal_threshold:.6g}"
            )
            logger.info(
                f"Dual residual squared norm: {state.dual_residual_sqr:.6g},  "
                f"threshold: {state.dual_threshold:.6g}"
            )

        state.SX.flip()

    return ADMMResult(
        X=state.X,
        iterations=state.iteration,
        converged=state.converged,
        primal_residual_sqr=state.primal_residual_sqr,
        dual_residual_sqr=state.dual_residual_sqr,
        history=list(state.history),
    )


__all__ = [
    "PingPong",
    "ADMMState",
    "ADMMResult",
    "init_admm_state",
    "update_Y",
    "update_X",
    "update_dual_variables",
    "compute_integrable_gradients",
]
