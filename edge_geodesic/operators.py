"""
Discrete operators for the implicit heat step.

Builds edge vectors, face areas, per-halfedge half cotangents and the
cotangent Laplacian coefficient table of ``(A + h^2 L)``. The table is laid
out row by row in spanning order, each row listing its neighbours in
circulator order followed by a trailing diagonal entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import torch
from torch import Tensor

from .mesh import TriangleMesh
from .parallel import ForkJoinPool
from .spanning import SpanningOrder


EPS = 1.0e-30


@dataclass
class MeshGeometry:
    edge_vectors: Tensor  # (nE, 3) canonical direction b - a
    edge_sqr_length: Tensor  # (nE,)
    face_area: Tensor  # (nF,)
    halfedge_halfcot: Tensor  # (nF, 3) half cotangent of the angle opposite each face halfedge
    step_length: float  # h^2 with h the mean edge length


@dataclass
class LaplacianCoefficients:
    """CSR rows aligned with the spanning order; the last entry of a row is its diagonal."""

    offsets: Tensor  # (n_ordered + 1,)
    indices: Tensor  # (nnz,) vertex ids
    weights: Tensor  # (nnz,)
    entry_row: Tensor  # (nnz,) owning row of each entry
    vertex_area: Tensor  # (nV,)

    @property
    def n_rows(self) -> int:
        return int(self.offsets.numel()) - 1

    @property
    def diagonal_positions(self) -> Tensor:
        return self.offsets[1:] - 1

    @property
    def diagonal(self) -> Tensor:
        return self.weights[self.diagonal_positions]

    def off_diagonal_mask(self) -> Tensor:
        mask = torch.ones_like(self.entry_row, dtype=torch.bool)
        mask[self.diagonal_positions] = False
        return mask


def _pool_or_inline(pool: Optional[ForkJoinPool]) -> ForkJoinPool:
    return pool if pool is not None else ForkJoinPool(1)


@torch.no_grad()
def edge_vectors(mesh: TriangleMesh, pool: Optional[ForkJoinPool] = None) -> tuple[Tensor, Tensor]:
    """Canonical edge vectors and their squared lengths."""

    pool = _pool_or_inline(pool)
    V = mesh.vertices
    ev = mesh.edge_vertices
    vec = torch.empty((mesh.n_edges, 3), dtype=V.dtype, device=V.device)
    sq = torch.empty(mesh.n_edges, dtype=V.dtype, device=V.device)

    def body(start: int, stop: int) -> None:
        d = V[ev[start:stop, 1]] - V[ev[start:stop, 0]]
        vec[start:stop] = d
        sq[start:stop] = (d * d).sum(dim=1)

    pool.parallel_for(mesh.n_edges, body)
    return vec, sq


@torch.no_grad()
def face_areas_and_halfcot(
    mesh: TriangleMesh,
    edge_vec: Tensor,
    edge_sqr_length: Tensor,
    pool: Optional[ForkJoinPool] = None,
) -> tuple[Tensor, Tensor]:
    """Per-face area and the half cotangent ``cot(theta) / 2`` opposite each face halfedge.

    With ``l_k`` the length of halfedge ``k`` of a triangle of area ``A``,
    ``cot`` of the opposite angle is ``(l_{k+1}^2 + l_{k+2}^2 - l_k^2) / (4 A)``.
    """

    pool = _pool_or_inline(pool)
    he_edge = mesh.halfedge_edge.view(-1, 3)
    area = torch.empty(mesh.n_faces, dtype=edge_vec.dtype, device=edge_vec.device)
    halfcot = torch.empty((mesh.n_faces, 3), dtype=edge_vec.dtype, device=edge_vec.device)

    def body(start: int, stop: int) -> None:
        fe = he_edge[start:stop]
        cross = torch.cross(edge_vec[fe[:, 0]], edge_vec[fe[:, 1]], dim=1)
        a = 0.5 * torch.linalg.norm(cross, dim=1)
        l2 = edge_sqr_length[fe]
        l2_next = l2[:, [1, 2, 0]]
        l2_prev = l2[:, [2, 0, 1]]
        area[start:stop] = a
        halfcot[start:stop] = 0.125 * (l2_next + l2_prev - l2) / a.clamp_min(EPS)[:, None]

    pool.parallel_for(mesh.n_faces, body)
    return area, halfcot


@torch.no_grad()
def compute_geometry(mesh: TriangleMesh, pool: Optional[ForkJoinPool] = None) -> MeshGeometry:
    vec, sq = edge_vectors(mesh, pool)
    area, halfcot = face_areas_and_halfcot(mesh, vec, sq, pool)
    h = float(torch.sqrt(sq).mean().item())
    return MeshGeometry(
        edge_vectors=vec,
        edge_sqr_length=sq,
        face_area=area,
        halfedge_halfcot=halfcot,
        step_length=h * h,
    )


def edge_cotan_weights(mesh: TriangleMesh, halfcot: Tensor) -> Tensor:
    """Sum of the (one or two) half cotangents attached to each edge."""

    w = torch.zeros(mesh.n_edges, dtype=halfcot.dtype, device=halfcot.device)
    w.index_add_(0, mesh.halfedge_edge, halfcot.reshape(-1))
    return w


def vertex_areas(mesh: TriangleMesh, face_area: Tensor) -> Tensor:
    """Barycentric vertex area: a third of the incident face areas."""

    masses = torch.zeros(mesh.n_vertices, dtype=face_area.dtype, device=face_area.device)
    for corner in range(3):
        masses.index_add_(0, mesh.faces[:, corner], face_area / 3.0)
    return masses


@torch.no_grad()
def assemble_laplacian(
    mesh: TriangleMesh,
    order: SpanningOrder,
    geometry: MeshGeometry,
    *,
    dtype: Optional[torch.dtype] = None,
    pool: Optional[ForkJoinPool] = None,
) -> LaplacianCoefficients:
    """Coefficient rows of ``(A + h^2 L)`` for every vertex of the spanning order.

    Off-diagonal weights are ``h^2 (cot a + cot b) / 2``; the diagonal is the
    sum of those plus the vertex area.
    """

    pool = _pool_or_inline(pool)
    dtype = dtype or geometry.face_area.dtype
    device = mesh.device
    t = geometry.step_length

    w_edge = edge_cotan_weights(mesh, geometry.halfedge_halfcot)
    v_area = vertex_areas(mesh, geometry.face_area)

    rows_v = order.order
    n_rows = rows_v.numel()
    deg = (mesh.vertex_offsets[1:] - mesh.vertex_offsets[:-1])[rows_v]
    offsets = torch.zeros(n_rows + 1, dtype=torch.long, device=device)
    offsets[1:] = torch.cumsum(deg + 1, dim=0)
    nnz = int(offsets[-1].item())

    indices = torch.empty(nnz, dtype=torch.long, device=device)
    weights = torch.empty(nnz, dtype=dtype, device=device)
    entry_row = torch.repeat_interleave(torch.arange(n_rows, device=device), deg + 1)

    def body(start: int, stop: int) -> None:
        v = rows_v[start:stop]
        d = deg[start:stop]
        local_rows = torch.repeat_interleave(torch.arange(stop - start, device=device), d)
        row_start = offsets[start:stop]
        first_slot = mesh.vertex_offsets[v]
        n_nbr = int(d.sum().item())
        cum = torch.zeros(stop - start, dtype=torch.long, device=device)
        if stop - start > 1:
            cum[1:] = torch.cumsum(d, dim=0)[:-1]
        k = torch.arange(n_nbr, device=device) - cum[local_rows]
        slots = first_slot[local_rows] + k
        dest = row_start[local_rows] + k
        w = (t * w_edge[mesh.vertex_edges[slots]]).to(dtype)
        indices[dest] = mesh.vertex_neighbors[slots]
        weights[dest] = w

        diag_pos = offsets[start + 1:stop + 1] - 1
        wsum = torch.zeros(stop - start, dtype=dtype, device=device)
        wsum.index_add_(0, local_rows, w)
        indices[diag_pos] = v
        weights[diag_pos] = wsum + v_area[v].to(dtype)

    pool.parallel_for(n_rows, body)
    return LaplacianCoefficients(
        offsets=offsets,
        indices=indices,
        weights=weights,
        entry_row=entry_row,
        vertex_area=v_area.to(dtype),
    )


__all__ = [
    "MeshGeometry",
    "LaplacianCoefficients",
    "edge_vectors",
    "face_areas_and_halfcot",
    "compute_geometry",
    "edge_cotan_weights",
    "vertex_areas",
    "assemble_laplacian",
]
