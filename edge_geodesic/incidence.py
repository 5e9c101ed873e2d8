"""
Face-corner/edge incidence tables and target edge differences.

Row ``3*f + k`` of every per-corner array belongs to halfedge ``3*f + k``.
``S`` maps the row to its edge, ``Q`` holds +1 when the face traverses the
edge in canonical direction and -1 otherwise, and ``Z`` is the target
difference ``d(b) - d(a)`` across canonical edge ``a -> b`` estimated from the
face's unit gradient.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import torch
from torch import Tensor

from .mesh import TriangleMesh
from .parallel import ForkJoinPool
from .spanning import SpanningOrder


@dataclass
class IncidenceTables:
    S: Tensor  # (nF, 3) edge id per face corner
    Q: Tensor  # (nF, 3) orientation sign, same dtype as Z
    Z: Tensor  # (3 nF,) target edge differences
    edge_rows: Tensor  # (nE, 2) corner rows touching each edge, -1 padded
    edge_row_count: Tensor  # (nE,) 1 for boundary edges, 2 for interior ones
    transition_from: Tensor  # (n_ordered,) predecessor vertex, -1 for sources
    transition_code: Tensor  # (n_ordered,) e if canonical, -e-1 otherwise; -1 for sources

    @property
    def n_faces(self) -> int:
        return int(self.S.shape[0])

    @property
    def n_edges(self) -> int:
        return int(self.edge_rows.shape[0])


def encode_transition(edge: Tensor, canonical: Tensor) -> Tensor:
    """Pack edge id and direction into one signed code."""

    return torch.where(canonical, edge, -edge - 1)


def decode_transition(code: Tensor) -> tuple[Tensor, Tensor]:
    """Inverse of :func:`encode_transition`: ``(edge, forward)``, ``forward`` True where the code is canonical."""

    forward = code >= 0
    edge = torch.where(forward, code, -code - 1)
    return edge, forward


@torch.no_grad()
def build_incidence(
    mesh: TriangleMesh,
    order: SpanningOrder,
    edge_vec: Tensor,
    face_gradient: Tensor,
    *,
    dtype: torch.dtype = torch.float64,
    pool: Optional[ForkJoinPool] = None,
) -> IncidenceTables:
    pool = pool if pool is not None else ForkJoinPool(1)
    device = mesh.device
    nF = mesh.n_faces
    nE = mesh.n_edges

    S = mesh.halfedge_edge.view(nF, 3)
    Q = (mesh.halfedge_is_canonical.to(dtype) * 2.0 - 1.0).view(nF, 3)
    Z = torch.empty(3 * nF, dtype=dtype, device=device)
    g = face_gradient.to(dtype)
    vec = edge_vec.to(dtype)

    def targets(start: int, stop: int) -> None:
        e = vec[S[start:stop]]  # (n, 3, xyz)
        Z[3 * start:3 * stop] = (e * g[start:stop, None, :]).sum(dim=2).reshape(-1)

    pool.parallel_for(nF, targets)

    # Corner rows per edge: the row with the smaller index goes first.
    rows = torch.arange(3 * nF, device=device)
    edge_of_row = S.reshape(-1)
    first = torch.full((nE,), 3 * nF, dtype=torch.long, device=device)
    first = first.scatter_reduce(0, edge_of_row, rows, reduce="amin")
    last = torch.full((nE,), -1, dtype=torch.long, device=device)
    last = last.scatter_reduce(0, edge_of_row, rows, reduce="amax")
    count = torch.bincount(edge_of_row, minlength=nE)
    edge_rows = torch.stack([first, torch.where(count > 1, last, torch.full_like(last, -1))], dim=1)

    pred_edge = order.predecessor_edge
    code = encode_transition(pred_edge, order.predecessor_canonical)
    code = torch.where(pred_edge >= 0, code, torch.full_like(code, -1))

    return IncidenceTables(
        S=S,
        Q=Q,
        Z=Z,
        edge_rows=edge_rows,
        edge_row_count=count,
        transition_from=order.predecessor,
        transition_code=code,
    )


@torch.no_grad()
def initial_edge_values(tables: IncidenceTables, pool: Optional[ForkJoinPool] = None) -> Tensor:
    """Average of the targets of the corner rows referencing each edge."""

    pool = pool if pool is not None else ForkJoinPool(1)
    X = torch.empty(tables.n_edges, dtype=tables.Z.dtype, device=tables.Z.device)
    Z = tables.Z

    def body(start: int, stop: int) -> None:
        r = tables.edge_rows[start:stop]
        valid = r >= 0
        vals = torch.where(valid, Z[r.clamp_min(0)], torch.zeros((), dtype=Z.dtype, device=Z.device))
        X[start:stop] = vals.sum(dim=1) / tables.edge_row_count[start:stop].to(Z.dtype)

    pool.parallel_for(tables.n_edges, body)
    return X


__all__ = [
    "IncidenceTables",
    "encode_transition",
    "decode_transition",
    "build_incidence",
    "initial_edge_values",
]
