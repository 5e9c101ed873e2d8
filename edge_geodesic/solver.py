"""
Orchestration of one geodesic distance solve.

All state of an invocation lives on a :class:`SolveContext`, so independent
solves never share buffers. Phases run in a fixed order:

    spanning order -> Gauss-Seidel heat solve -> incidence tables
    -> ADMM repair -> distance recovery
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import torch
from torch import Tensor

from .admm import ADMMResult, compute_integrable_gradients, init_admm_state
from .config import SolverParameters
from .errors import GeodesicError, InvalidMeshError, InvalidSourceVertexError
from .heat import HeatDiffusionPhase, HeatSolveResult, initial_gradient
from .incidence import IncidenceTables, build_incidence
from .logger import ConvergenceLogger
from .mesh import TriangleMesh
from .mesh_io import load_mesh_any
from .operators import compute_geometry
from .parallel import ForkJoinPool
from .reconstruct import integrate_geodesic_distance
from .spanning import SpanningOrder, build_spanning_order
from .utils import resolve_device, resolve_dtype


@dataclass
class SolveContext:
    mesh: TriangleMesh  # normalised copy
    params: SolverParameters
    pool: ForkJoinPool
    logger: ConvergenceLogger
    heat_dtype: torch.dtype
    scale: float = 1.0
    order: Optional[SpanningOrder] = None
    edge_vectors: Optional[Tensor] = None
    face_gradient: Optional[Tensor] = None
    heat_result: Optional[HeatSolveResult] = None
    tables: Optional[IncidenceTables] = None
    admm_result: Optional[ADMMResult] = None
    distances: Optional[Tensor] = None
    timings: Dict[str, float] = field(default_factory=dict)


@dataclass
class SolveResult:
    distances: Optional[np.ndarray]
    error: Optional[GeodesicError] = None
    timings: Dict[str, float] = field(default_factory=dict)
    heat_sweeps: int = 0
    heat_converged: bool = False
    admm_iterations: int = 0
    admm_converged: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.distances is not None


def validate_inputs(mesh: TriangleMesh, params: SolverParameters) -> None:
    """Reject bad meshes and source lists before any numerical work."""

    if mesh.n_vertices == 0 or mesh.n_faces == 0 or mesh.n_edges == 0:
        raise InvalidMeshError("Zero mesh element count.")
    lo, hi = mesh.bounding_box()
    if not float(torch.linalg.norm(hi - lo).item()) > 0.0:
        raise InvalidMeshError("Mesh bounding box is degenerate (all vertices coincide).")
    params.validate()
    valence = mesh.valence()
    for s in params.source_vertices:
        if s < 0 or s >= mesh.n_vertices:
            raise InvalidSourceVertexError(s, mesh.n_vertices)
        if int(valence[s]) == 0:
            raise InvalidSourceVertexError(s, mesh.n_vertices, "vertex is not part of any face")


def init_bfs_paths(ctx: SolveContext) -> None:
    ctx.order = build_spanning_order(ctx.mesh, ctx.params.source_vertices)


def gauss_seidel_init_gradients(ctx: SolveContext) -> None:
    p = ctx.params
    geometry = compute_geometry(ctx.mesh, ctx.pool)
    with HeatDiffusionPhase(ctx.mesh, ctx.order, geometry, dtype=ctx.heat_dtype, pool=ctx.pool) as phase:
        ctx.heat_result = phase.solve(
            eps=p.heat_solver_eps,
            max_iter=p.heat_solver_max_iter,
            check_frequency=p.heat_solver_convergence_check_frequency,
            logger=ctx.logger,
        )
    ctx.edge_vectors = geometry.edge_vectors
    ctx.face_gradient = initial_gradient(ctx.mesh, geometry.edge_vectors, ctx.heat_result.heat, ctx.pool)


def prepare_integrate_geodesic_distance(ctx: SolveContext) -> None:
    ctx.tables = build_incidence(
        ctx.mesh,
        ctx.order,
        ctx.edge_vectors,
        ctx.face_gradient,
        dtype=ctx.mesh.vertices.dtype,
        pool=ctx.pool,
    )
    ctx.edge_vectors = None
    ctx.face_gradient = None


def compute_integrable_edge_field(ctx: SolveContext) -> None:
    p = ctx.params
    state = init_admm_state(ctx.tables, penalty=p.penalty, eps=p.grad_solver_eps, pool=ctx.pool)
    ctx.admm_result = compute_integrable_gradients(
        state,
        ctx.tables,
        max_iter=p.grad_solver_max_iter,
        check_frequency=p.grad_solver_convergence_check_frequency,
        output_frequency=p.grad_solver_output_frequency,
        pool=ctx.pool,
        logger=ctx.logger,
    )


def recover_distances(ctx: SolveContext) -> None:
    ctx.distances = integrate_geodesic_distance(
        ctx.admm_result.X,
        ctx.order,
        ctx.tables,
        ctx.mesh.n_vertices,
        scale=ctx.scale,
        unreached_value=ctx.params.unreached_distance,
        pool=ctx.pool,
    )


def _print_timings(logger: ConvergenceLogger, timings: Dict[str, float]) -> None:
    logger.info("")
    logger.info("====== Timing ======")
    labels = [
        ("bfs", "Pre-computation of BFS paths"),
        ("gauss_seidel", "Gauss-Seidel initialization of gradients"),
        ("admm", "ADMM solver for integrable gradients"),
        ("integration", "Integration of gradients"),
        ("total", "Total time"),
    ]
    for key, label in labels:
        if key in timings:
            logger.info(f"{label}: {timings[key]:.4f} seconds")


def run_phases(ctx: SolveContext) -> Tensor:
    log = ctx.logger
    t0 = time.perf_counter()
    log.info("Initialize BFS path......")
    init_bfs_paths(ctx)
    t1 = time.perf_counter()
    log.info("Gauss-Seidel initialization of gradients......")
    gauss_seidel_init_gradients(ctx)
    t2 = time.perf_counter()
    log.info("ADMM solver for integrable gradients......")
    prepare_integrate_geodesic_distance(ctx)
    compute_integrable_edge_field(ctx)
    t3 = time.perf_counter()
    log.info("Recovery of geodesic distance......")
    recover_distances(ctx)
    t4 = time.perf_counter()
    ctx.timings.update(
        {
            "bfs": t1 - t0,
            "gauss_seidel": t2 - t1,
            "admm": t3 - t2,
            "integration": t4 - t3,
            "total": t4 - t0,
        }
    )
    _print_timings(log, ctx.timings)
    return ctx.distances


def make_context(mesh: TriangleMesh, params: SolverParameters, pool: ForkJoinPool, logger: ConvergenceLogger) -> SolveContext:
    device = resolve_device(params.device)
    if mesh.device != device:
        mesh = mesh.to(device)
    normalized, scale = mesh.normalized()
    return SolveContext(
        mesh=normalized,
        params=params,
        pool=pool,
        logger=logger,
        heat_dtype=resolve_dtype(params.heat_dtype, device),
        scale=scale,
    )


def solve_geodesic_distance(
    mesh: TriangleMesh,
    params: SolverParameters,
    *,
    logger: Optional[ConvergenceLogger] = None,
) -> Tensor:
    """Geodesic distance from ``params.source_vertices`` to every vertex of ``mesh``.

    Raises :class:`InvalidMeshError` or :class:`InvalidSourceVertexError` before
    solving starts. Reaching an iteration cap is not an error; the best
    available approximation is returned. Unreached vertices hold
    ``params.unreached_distance``.
    """

    validate_inputs(mesh, params)
    own_logger = logger is None
    if logger is None:
        logger = ConvergenceLogger(params.log_dir, verbose=params.verbose, enable_tb=params.tensorboard)
    try:
        with ForkJoinPool(params.num_workers) as pool:
            ctx = make_context(mesh, params, pool, logger)
            return run_phases(ctx)
    finally:
        if own_logger:
            logger.close()


class GeodesicSolver:
    """File-level front-end returning an explicit :class:`SolveResult`."""

    def __init__(self) -> None:
        self.last_context: Optional[SolveContext] = None

    def solve(
        self,
        mesh_file: str | Path | TriangleMesh,
        params: SolverParameters,
    ) -> SolveResult:
        logger = ConvergenceLogger(params.log_dir, verbose=params.verbose, enable_tb=params.tensorboard)
        try:
            if isinstance(mesh_file, TriangleMesh):
                mesh = mesh_file
            else:
                logger.info("Reading triangle mesh......")
                V_np, F_np = load_mesh_any(mesh_file)
                mesh = TriangleMesh(V_np, F_np, device=resolve_device(params.device))
            validate_inputs(mesh, params)
        except GeodesicError as exc:
            logger.info(f"Error: {exc}")
            logger.close()
            return SolveResult(distances=None, error=exc)

        try:
            with ForkJoinPool(params.num_workers) as pool:
                ctx = make_context(mesh, params, pool, logger)
                self.last_context = ctx
                distances = run_phases(ctx)
        finally:
            logger.close()

        return SolveResult(
            distances=distances.detach().cpu().numpy(),
            timings=dict(ctx.timings),
            heat_sweeps=ctx.heat_result.sweeps,
            heat_converged=ctx.heat_result.converged,
            admm_iterations=ctx.admm_result.iterations,
            admm_converged=ctx.admm_result.converged,
        )


def geodesic_distance(
    vertices: np.ndarray,
    faces: np.ndarray,
    sources: Sequence[int],
    **options,
) -> np.ndarray:
    """Convenience wrapper over numpy arrays; ``options`` are :class:`SolverParameters` fields."""

    options.setdefault("verbose", False)
    params = SolverParameters(source_vertices=[int(s) for s in sources], **options)
    mesh = TriangleMesh(vertices, faces, device=resolve_device(params.device))
    return solve_geodesic_distance(mesh, params).detach().cpu().numpy()


__all__ = [
    "SolveContext",
    "SolveResult",
    "validate_inputs",
    "solve_geodesic_distance",
    "GeodesicSolver",
    "geodesic_distance",
]
