"""
Generic utilities (device, dtype and worker-count resolution) for the solver.
"""

from __future__ import annotations

import os
from typing import Optional

import torch


_DTYPES = {
    "float16": torch.float16,
    "half": torch.float16,
    "float32": torch.float32,
    "float": torch.float32,
    "single": torch.float32,
    "float64": torch.float64,
    "double": torch.float64,
}


def resolve_device(device: str | torch.device | None) -> torch.device:
    if isinstance(device, torch.device):
        return device
    raw = "cpu" if device is None else str(device).strip()
    lowered = raw.lower()
    if lowered == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        mps_backend = getattr(torch.backends, "mps", None)
        if mps_backend is not None and torch.backends.mps.is_available():
            return torch.device("mps")
        return torch.device("cpu")
    if lowered in {"", "cpu"}:
        return torch.device("cpu")
    if lowered.startswith("cuda"):
        if not torch.cuda.is_available():
            raise ValueError("CUDA requested but not available on this system.")
        return torch.device(raw)
    if lowered.startswith("mps"):
        mps_backend = getattr(torch.backends, "mps", None)
        if mps_backend is None or not torch.backends.mps.is_available():
            raise ValueError("MPS requested but not available on this system.")
        return torch.device("mps")
    return torch.device(raw)


def resolve_dtype(dtype: str | torch.dtype | None, device: torch.device | None = None) -> torch.dtype:
    """Map a config string onto a torch floating dtype.

    MPS has no float64 support, so double precision silently drops to float32
    there.
    """

    if isinstance(dtype, torch.dtype):
        resolved = dtype
    else:
        key = "float64" if dtype is None else str(dtype).strip().lower()
        if key.startswith("torch."):
            key = key[len("torch."):]
        if key not in _DTYPES:
            raise ValueError(f"Unsupported floating dtype {dtype!r}.")
        resolved = _DTYPES[key]
    if device is not None and device.type == "mps" and resolved == torch.float64:
        return torch.float32
    return resolved


def resolve_num_workers(num_workers: Optional[int]) -> int:
    if num_workers is None or int(num_workers) <= 0:
        return max(1, os.cpu_count() or 1)
    return int(num_workers)


__all__ = ["resolve_device", "resolve_dtype", "resolve_num_workers"]
