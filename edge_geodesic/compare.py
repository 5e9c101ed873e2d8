"""
Error statistics of a computed distance field against a reference one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence

import numpy as np


@dataclass
class DistanceError:
    n_compared: int
    mean_abs_error: float
    max_abs_error: float
    mean_relative_error: float
    max_relative_error: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def compare_distances(
    computed: np.ndarray,
    reference: np.ndarray,
    *,
    sources: Optional[Sequence[int]] = None,
) -> DistanceError:
    """Compare two per-vertex fields.

    Sources, vertices with a non-positive reference distance and vertices
    where either field is not finite are skipped; relative errors divide by
    the reference value.
    """

    d = np.asarray(computed, dtype=np.float64).reshape(-1)
    ref = np.asarray(reference, dtype=np.float64).reshape(-1)
    if d.shape != ref.shape:
        raise ValueError(
            f"Distance arrays differ in length (computed={d.shape[0]}, reference={ref.shape[0]})."
        )
    mask = np.isfinite(d) & np.isfinite(ref) & (ref > 0.0)
    if sources is not None:
        idx = np.asarray(list(sources), dtype=np.int64)
        mask[idx[(idx >= 0) & (idx < mask.shape[0])]] = False
    n = int(mask.sum())
    if n == 0:
        return DistanceError(0, 0.0, 0.0, 0.0, 0.0)
    abs_err = np.abs(d[mask] - ref[mask])
    rel_err = abs_err / ref[mask]
    return DistanceError(
        n_compared=n,
        mean_abs_error=float(abs_err.mean()),
        max_abs_error=float(abs_err.max()),
        mean_relative_error=float(rel_err.mean()),
        max_relative_error=float(rel_err.max()),
    )


__all__ = ["DistanceError", "compare_distances"]
