"""
Integration of the repaired edge field into per-vertex distances.
"""

from __future__ import annotations

import math
from typing import Optional

import torch
from torch import Tensor

from .incidence import IncidenceTables, decode_transition
from .parallel import ForkJoinPool
from .spanning import SpanningOrder


@torch.no_grad()
def integrate_geodesic_distance(
    X: Tensor,
    order: SpanningOrder,
    tables: IncidenceTables,
    n_vertices: int,
    *,
    scale: float = 1.0,
    unreached_value: float = math.inf,
    pool: Optional[ForkJoinPool] = None,
) -> Tensor:
    """Propagate ``X`` from the sources outwards, one BFS segment at a time.

    Sources get 0. A vertex reached over edge ``e`` gets
    ``d(pred) + X[e]`` when it was discovered along the canonical direction
    of ``e`` and ``d(pred) - X[e]`` otherwise. The result is multiplied by
    ``scale`` to undo mesh normalisation; vertices outside the order keep
    ``unreached_value``.
    """

    pool = pool if pool is not None else ForkJoinPool(1)
    dist = torch.full((n_vertices,), float(unreached_value), dtype=X.dtype, device=X.device)
    rows_v = order.order
    dist[rows_v[: order.n_sources]] = 0.0

    edge, forward = decode_transition(tables.transition_code)
    step = torch.where(forward, X[edge.clamp_min(0)], -X[edge.clamp_min(0)])
    pred = tables.transition_from

    for segment in range(1, order.n_segments):
        seg_begin, seg_end = order.segment_bounds(segment)

        def body(start: int, stop: int) -> None:
            a, b = seg_begin + start, seg_begin + stop
            dist[rows_v[a:b]] = dist[pred[a:b]] + step[a:b]

        pool.parallel_for(seg_end - seg_begin, body)

    reached = torch.zeros(n_vertices, dtype=torch.bool, device=X.device)
    reached[rows_v] = True
    dist[reached] = dist[reached] * float(scale)
    return dist


__all__ = ["integrate_geodesic_distance"]
