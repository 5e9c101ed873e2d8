"""
Triangle mesh adapter used by the solver.

Only the queries the solver needs are provided: element counts, vertex
positions, edges with a canonical direction, halfedge/edge identity, and an
ordered vertex circulator. Halfedges are face corners: halfedge ``3*f + k``
runs from ``faces[f, k]`` to ``faces[f, (k + 1) % 3]``. Boundary halfedges are
implicit; they count towards ``n_halfedges`` but carry no face.
"""

from __future__ import annotations

import copy
from typing import Optional, Tuple

import numpy as np
import torch
from torch import Tensor

from .errors import InvalidMeshError


def _dtype_for_device(device: torch.device | str) -> torch.dtype:
    dev = torch.device(device)
    return torch.float32 if dev.type == "mps" else torch.float64


class TriangleMesh:
    """Hold mesh data and precompute edge topology and vertex adjacency."""

    def __init__(
        self,
        V_np: np.ndarray | Tensor,
        F_np: np.ndarray | Tensor,
        *,
        device: str | torch.device = "cpu",
        dtype: Optional[torch.dtype] = None,
    ) -> None:
        torch_device = torch.device(device)
        V = torch.as_tensor(np.asarray(V_np) if not isinstance(V_np, Tensor) else V_np)
        F = torch.as_tensor(np.asarray(F_np) if not isinstance(F_np, Tensor) else F_np)
        if V.ndim != 2 or (V.numel() > 0 and V.shape[1] != 3):
            raise InvalidMeshError(f"Vertex array must have shape (nV, 3), got {tuple(V.shape)}.")
        if F.ndim != 2 or (F.numel() > 0 and F.shape[1] != 3):
            raise InvalidMeshError(f"Face array must have shape (nF, 3), got {tuple(F.shape)}.")
        dtype = dtype or _dtype_for_device(torch_device)
        self.vertices = V.to(device=torch_device, dtype=dtype)
        self.faces = F.to(device=torch_device, dtype=torch.long)
        self.n_vertices = int(self.vertices.shape[0])
        self.n_faces = int(self.faces.shape[0])
        if self.n_vertices == 0 or self.n_faces == 0:
            raise InvalidMeshError(
                f"Zero mesh element count (vertices={self.n_vertices}, faces={self.n_faces})."
            )
        if int(self.faces.min()) < 0 or int(self.faces.max()) >= self.n_vertices:
            raise InvalidMeshError("Face array references vertex indices outside the vertex array.")
        i, j, k = self.faces[:, 0], self.faces[:, 1], self.faces[:, 2]
        if bool(((i == j) | (j == k) | (k == i)).any()):
            raise InvalidMeshError("Mesh contains faces with repeated vertex indices.")
        self._build_topology()

    @property
    def device(self) -> torch.device:
        return self.vertices.device

    @property
    def n_halfedges(self) -> int:
        return 2 * self.n_edges

    @torch.no_grad()
    def _build_topology(self) -> None:
        """Unique edges, canonical directions and the CSR vertex circulator."""
        F = self.faces
        device = F.device
        nV = self.n_vertices

        he_from = F.reshape(-1)
        he_to = F[:, [1, 2, 0]].reshape(-1)
        lo = torch.minimum(he_from, he_to)
        hi = torch.maximum(he_from, he_to)
        keys = lo * nV + hi
        _, inv = torch.unique(keys, return_inverse=True)
        n_edges = int(inv.max().item()) + 1 if inv.numel() > 0 else 0
        if n_edges == 0:
            raise InvalidMeshError("Zero mesh element count (edges=0).")

        counts = torch.bincount(inv, minlength=n_edges)
        if bool((counts > 2).any()):
            raise InvalidMeshError("Non-manifold mesh: an edge is shared by more than two faces.")

        n_he = he_from.numel()
        he_ids = torch.arange(n_he, device=device)
        first = torch.full((n_edges,), n_he, dtype=torch.long, device=device)
        first = first.scatter_reduce(0, inv, he_ids, reduce="amin")

        self.n_edges = n_edges
        self.halfedge_from = he_from
        self.halfedge_to = he_to
        self.halfedge_edge = inv
        self.edge_canonical_halfedge = first
        self.edge_vertices = torch.stack([he_from[first], he_to[first]], dim=1)
        self.halfedge_is_canonical = he_from == self.edge_vertices[inv, 0]
        self.edge_face_count = counts

        # Vertex circulator: neighbours ordered by ascending edge id.
        ev = self.edge_vertices
        edge_ids = torch.arange(n_edges, device=device)
        owner = torch.cat([ev[:, 0], ev[:, 1]])
        neighbor = torch.cat([ev[:, 1], ev[:, 0]])
        incident = torch.cat([edge_ids, edge_ids])
        order = torch.argsort(owner * n_edges + incident)
        self.vertex_neighbors = neighbor[order]
        self.vertex_edges = incident[order]
        valence = torch.bincount(owner, minlength=nV)
        self.vertex_offsets = torch.zeros(nV + 1, dtype=torch.long, device=device)
        self.vertex_offsets[1:] = torch.cumsum(valence, dim=0)

    def valence(self, v: Optional[int] = None) -> Tensor | int:
        deg = self.vertex_offsets[1:] - self.vertex_offsets[:-1]
        if v is None:
            return deg
        return int(deg[v].item())

    def neighbors(self, v: int) -> Tuple[Tensor, Tensor]:
        """Return ``(neighbor_vertices, edge_ids)`` of ``v`` in circulator order."""

        start = int(self.vertex_offsets[v].item())
        end = int(self.vertex_offsets[v + 1].item())
        return self.vertex_neighbors[start:end], self.vertex_edges[start:end]

    def boundary_edge_mask(self) -> Tensor:
        return self.edge_face_count == 1

    def bounding_box(self) -> Tuple[Tensor, Tensor]:
        return self.vertices.min(dim=0).values, self.vertices.max(dim=0).values

    def normalized(self) -> Tuple["TriangleMesh", float]:
        """Return a centred copy scaled to unit bounding-box diagonal, plus the scale.

        Topology is shared with ``self``; only the positions differ.
        """

        lo, hi = self.bounding_box()
        scale = float(torch.linalg.norm(hi - lo).item())
        if scale <= 0.0:
            raise InvalidMeshError("Mesh bounding box is degenerate (all vertices coincide).")
        center = 0.5 * (lo + hi)
        out = copy.copy(self)
        out.vertices = (self.vertices - center) / scale
        return out, scale

    def to(self, device: str | torch.device) -> "TriangleMesh":
        out = copy.copy(self)
        for name, value in vars(self).items():
            if isinstance(value, Tensor):
                setattr(out, name, value.to(device))
        return out

    def __repr__(self) -> str:
        return (
            f"TriangleMesh(n_vertices={self.n_vertices}, n_faces={self.n_faces}, "
            f"n_edges={self.n_edges}, device={self.device})"
        )


__all__ = ["TriangleMesh"]
