"""
Multi-source breadth-first spanning order.

Segment 0 holds the sources in input order. Each later segment is built by
scanning the previous one in order and, for every vertex, its neighbours in
circulator order; the halfedge that first discovers a vertex becomes its
predecessor. Vertices no source reaches never enter the order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import torch
from torch import Tensor

from .mesh import TriangleMesh


@dataclass
class SpanningOrder:
    order: Tensor  # (n_ordered,) vertex ids in BFS order
    segment_offsets: Tensor  # (n_segments + 1,)
    predecessor: Tensor  # (n_ordered,) discovering vertex, -1 for sources
    predecessor_edge: Tensor  # (n_ordered,) edge of the discovering halfedge, -1 for sources
    predecessor_canonical: Tensor  # (n_ordered,) bool, discovering halfedge runs in canonical direction
    n_sources: int

    @property
    def n_ordered(self) -> int:
        return int(self.order.numel())

    @property
    def n_segments(self) -> int:
        return int(self.segment_offsets.numel()) - 1

    def segment_bounds(self, segment: int) -> tuple[int, int]:
        return int(self.segment_offsets[segment]), int(self.segment_offsets[segment + 1])

    def max_segment_size(self) -> int:
        if self.n_segments == 0:
            return 0
        return int((self.segment_offsets[1:] - self.segment_offsets[:-1]).max().item())

    def segment_of(self, n_vertices: int) -> Tensor:
        """Per-vertex layer index, ``-1`` for vertices that were never reached."""

        seg = torch.full((n_vertices,), -1, dtype=torch.long, device=self.order.device)
        sizes = self.segment_offsets[1:] - self.segment_offsets[:-1]
        layer = torch.repeat_interleave(torch.arange(self.n_segments, device=self.order.device), sizes)
        seg[self.order] = layer
        return seg

    def position_of(self, n_vertices: int) -> Tensor:
        """Map vertex id to its row in the order (``-1`` if unreached)."""

        pos = torch.full((n_vertices,), -1, dtype=torch.long, device=self.order.device)
        pos[self.order] = torch.arange(self.n_ordered, device=self.order.device)
        return pos

    def reached_mask(self, n_vertices: int) -> Tensor:
        return self.position_of(n_vertices) >= 0


@torch.no_grad()
def build_spanning_order(mesh: TriangleMesh, sources: Sequence[int]) -> SpanningOrder:
    """Breadth-first layering of the mesh vertices from ``sources``."""

    offsets = mesh.vertex_offsets.cpu().tolist()
    neighbors = mesh.vertex_neighbors.cpu().tolist()
    edges = mesh.vertex_edges.cpu().tolist()
    edge_from = mesh.edge_vertices[:, 0].cpu().tolist()

    visited = [False] * mesh.n_vertices
    order: List[int] = []
    pred: List[int] = []
    pred_edge: List[int] = []
    pred_canonical: List[bool] = []
    for s in sources:
        s = int(s)
        visited[s] = True
        order.append(s)
        pred.append(-1)
        pred_edge.append(-1)
        pred_canonical.append(False)
    segment_offsets = [0, len(order)]

    begin = 0
    while begin < len(order):
        end = len(order)
        for idx in range(begin, end):
            v = order[idx]
            for slot in range(offsets[v], offsets[v + 1]):
                w = neighbors[slot]
                if visited[w]:
                    continue
                visited[w] = True
                e = edges[slot]
                order.append(w)
                pred.append(v)
                pred_edge.append(e)
                pred_canonical.append(edge_from[e] == v)
        if len(order) > end:
            segment_offsets.append(len(order))
        begin = end

    device = mesh.device
    return SpanningOrder(
        order=torch.tensor(order, dtype=torch.long, device=device),
        segment_offsets=torch.tensor(segment_offsets, dtype=torch.long, device=device),
        predecessor=torch.tensor(pred, dtype=torch.long, device=device),
        predecessor_edge=torch.tensor(pred_edge, dtype=torch.long, device=device),
        predecessor_canonical=torch.tensor(pred_canonical, dtype=torch.bool, device=device),
        n_sources=len(sources),
    )


__all__ = ["SpanningOrder", "build_spanning_order"]
