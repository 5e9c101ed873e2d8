"""
Layer-ordered Gauss-Seidel solve of one backward-Euler heat step.

Approximates ``(A + h^2 L) u = A delta_sources`` by sweeping the spanning
order segment by segment. Inside a segment every vertex is updated from the
values available before the segment started (blocked Gauss-Seidel), so a
segment is one data-parallel pass. The converged heat field is turned into a
unit per-face direction pointing away from the sources.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import torch
from torch import Tensor

from .logger import ConvergenceLogger, null_logger
from .mesh import TriangleMesh
from .operators import LaplacianCoefficients, MeshGeometry, assemble_laplacian
from .parallel import ForkJoinPool
from .spanning import SpanningOrder


EPS = 1.0e-12


def safe_norm(x: Tensor, *, dim: int = -1, keepdim: bool = True, eps: float = EPS) -> Tensor:
    """Return ||x|| with a lower bound to avoid division by zero."""

    return torch.clamp(torch.linalg.norm(x, dim=dim, keepdim=keepdim), min=eps)


def safe_normalize(x: Tensor, *, dim: int = -1, eps: float = EPS) -> Tensor:
    """Return x / ||x|| with safe denominator."""

    return x / safe_norm(x, dim=dim, keepdim=True, eps=eps)


@dataclass
class HeatSolveResult:
    heat: Tensor  # (nV,)
    sweeps: int
    residual_norm: float
    threshold: float
    converged: bool
    source_value: float


def initial_source_value(coef: LaplacianCoefficients, sources: Tensor, n_vertices: int) -> float:
    """``sqrt(min(nV / nS, total_area / source_area))``."""

    n_sources = int(sources.numel())
    total_area = float(coef.vertex_area.sum().item())
    source_area = float(coef.vertex_area[sources].sum().item())
    ratio = n_vertices / n_sources
    if source_area > 0.0:
        ratio = min(ratio, total_area / source_area)
    return math.sqrt(ratio)


class HeatDiffusionPhase:
    """Scoped owner of the Laplacian coefficient table.

    The table and its derived views exist only inside the ``with`` block;
    leaving it drops every reference so the memory is released before the
    later phases allocate theirs.
    """

    def __init__(
        self,
        mesh: TriangleMesh,
        order: SpanningOrder,
        geometry: MeshGeometry,
        *,
        dtype: torch.dtype = torch.float64,
        pool: Optional[ForkJoinPool] = None,
    ) -> None:
        self.mesh = mesh
        self.order = order
        self.geometry = geometry
        self.dtype = dtype
        self.pool = pool if pool is not None else ForkJoinPool(1)
        self.coef: Optional[LaplacianCoefficients] = None
        self._off_weights: Optional[Tensor] = None
        self._diag: Optional[Tensor] = None

    def __enter__(self) -> "HeatDiffusionPhase":
        self.coef = assemble_laplacian(self.mesh, self.order, self.geometry, dtype=self.dtype, pool=self.pool)
        mask = self.coef.off_diagonal_mask()
        self._off_weights = torch.where(mask, self.coef.weights, torch.zeros_like(self.coef.weights))
        self._diag = self.coef.diagonal
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def release(self) -> None:
        self.coef = None
        self._off_weights = None
        self._diag = None

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------
    def _neighbor_sums(self, u: Tensor, start: int, stop: int) -> Tensor:
        """``sum_j w_ij u_j`` over off-diagonal entries of rows ``[start, stop)``."""

        coef = self.coef
        lo = int(coef.offsets[start])
        hi = int(coef.offsets[stop])
        prod = self._off_weights[lo:hi] * u[coef.indices[lo:hi]]
        out = torch.zeros(stop - start, dtype=u.dtype, device=u.device)
        out.index_add_(0, coef.entry_row[lo:hi] - start, prod)
        return out

    def residual(self, u: Tensor, source_value: float) -> Tensor:
        """Per-row mismatch ``b - (A + h^2 L) u`` in spanning order."""

        n_rows = self.coef.n_rows
        n_sources = self.order.n_sources
        res = torch.empty(n_rows, dtype=u.dtype, device=u.device)
        rows_v = self.order.order

        def body(start: int, stop: int) -> None:
            r = self._neighbor_sums(u, start, stop) - self._diag[start:stop] * u[rows_v[start:stop]]
            if start < n_sources:
                r[: min(stop, n_sources) - start] += source_value
            res[start:stop] = r

        self.pool.parallel_for(n_rows, body)
        return res

    def residual_norm(self, residual: Tensor) -> float:
        sq = self.pool.parallel_sum(
            residual.numel(), lambda start, stop: (residual[start:stop] ** 2).sum()
        )
        return math.sqrt(float(sq))

    def sweep(self, u: Tensor, source_value: float, buffer: Tensor) -> None:
        """One full blocked Gauss-Seidel pass, segment by segment, updating ``u`` in place."""

        rows_v = self.order.order
        for segment in range(self.order.n_segments):
            seg_begin, seg_end = self.order.segment_bounds(segment)
            size = seg_end - seg_begin

            def compute(start: int, stop: int) -> None:
                a, b = seg_begin + start, seg_begin + stop
                val = self._neighbor_sums(u, a, b)
                if segment == 0:
                    val = val + source_value
                buffer[start:stop] = val / self._diag[a:b]

            def write(start: int, stop: int) -> None:
                u[rows_v[seg_begin + start:seg_begin + stop]] = buffer[start:stop]

            self.pool.parallel_for(size, compute)
            self.pool.parallel_for(size, write)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    @torch.no_grad()
    def solve(
        self,
        *,
        eps: float,
        max_iter: int,
        check_frequency: int,
        logger: Optional[ConvergenceLogger] = None,
    ) -> HeatSolveResult:
        if self.coef is None:
            raise RuntimeError("HeatDiffusionPhase.solve() must be called inside its context.")
        logger = logger or null_logger()
        logger.open_table("heat", ["sweep", "residual", "threshold"])

        n_vertices = self.mesh.n_vertices
        sources = self.order.order[: self.order.n_sources]
        source_value = initial_source_value(self.coef, sources, n_vertices)

        u = torch.zeros(n_vertices, dtype=self.dtype, device=self.mesh.device)
        u[sources] = source_value
        buffer = torch.zeros(max(1, self.order.max_segment_size()), dtype=self.dtype, device=self.mesh.device)

        init_norm = self.residual_norm(self.residual(u, source_value))
        threshold = max(1.0e-16, init_norm * float(eps))
        logger.info(f"Initial residual: {init_norm:.6g}, threshold: {threshold:.6g}")
        logger.log("heat", 0, {"residual": init_norm, "threshold": threshold})

        sweeps = 0
        residual_norm = init_norm
        converged = False
        while True:
            self.sweep(u, source_value, buffer)
            sweeps += 1
            reached_cap = sweeps >= max_iter
            if reached_cap or sweeps % check_frequency == 0:
                residual_norm = self.residual_norm(self.residual(u, source_value))
                logger.info(
                    f"Gauss-Seidel iteration {sweeps}, current residual: {residual_norm:.6g}, "
                    f"threshold: {threshold:.6g}"
                )
                logger.log("heat", sweeps, {"residual": residual_norm, "threshold": threshold})
                if residual_norm <= threshold:
                    converged = True
                    break
            if reached_cap:
                logger.info("Gauss-Seidel: maximum number of iterations reached.")
                break

        return HeatSolveResult(
            heat=u,
            sweeps=sweeps,
            residual_norm=residual_norm,
            threshold=threshold,
            converged=converged,
            source_value=source_value,
        )


@torch.no_grad()
def initial_gradient(
    mesh: TriangleMesh,
    edge_vec: Tensor,
    heat: Tensor,
    pool: Optional[ForkJoinPool] = None,
) -> Tensor:
    """Unit in-plane direction of ``-grad u`` per face, shape ``(nF, 3)``.

    For halfedge vectors ``e_k`` and heat ``u_k`` at the head of ``e_k``,
    ``(e0 u1 + e1 u2 + e2 u0) x N`` is parallel to ``-grad u``. Both the edge
    vectors and the heat values are rescaled to unit norm first; faces whose
    heat vanished give a zero vector.
    """

    pool = pool if pool is not None else ForkJoinPool(1)
    dtype = heat.dtype
    sign = (mesh.halfedge_is_canonical.to(dtype) * 2.0 - 1.0).view(-1, 3)
    he_edge = mesh.halfedge_edge.view(-1, 3)
    he_to = mesh.halfedge_to.view(-1, 3)
    grad = torch.empty((mesh.n_faces, 3), dtype=dtype, device=heat.device)

    def body(start: int, stop: int) -> None:
        e = edge_vec[he_edge[start:stop]].to(dtype) * sign[start:stop, :, None]  # (n, 3 halfedges, xyz)
        u = heat[he_to[start:stop]]
        u = u / safe_norm(u, dim=1)
        e = e / safe_norm(e.reshape(e.shape[0], -1), dim=1)[:, :, None]
        n_hat = safe_normalize(torch.cross(e[:, 0], e[:, 1], dim=1))
        v = e[:, 0] * u[:, 1:2] + e[:, 1] * u[:, 2:3] + e[:, 2] * u[:, 0:1]
        grad[start:stop] = safe_normalize(torch.cross(v, n_hat, dim=1))

    pool.parallel_for(mesh.n_faces, body)
    return grad


__all__ = [
    "safe_norm",
    "safe_normalize",
    "HeatSolveResult",
    "HeatDiffusionPhase",
    "initial_source_value",
    "initial_gradient",
]
