"""
Convergence logging for the iterative solvers.

Progress goes to the console when ``verbose`` is set; when an output directory
is given every residual checkpoint is also appended to a CSV file and,
optionally, to TensorBoard.
"""

from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import Any, Dict, Sequence


class ConvergenceLogger:
    """CSV + optional TensorBoard logging for residual checkpoints."""

    def __init__(
        self,
        out_dir: str | Path | None = None,
        *,
        verbose: bool = True,
        enable_tb: bool = True,
    ) -> None:
        self.verbose = verbose
        self.out_dir = Path(out_dir) if out_dir is not None else None
        self._files: Dict[str, object] = {}
        self._writers: Dict[str, Any] = {}
        self.tb = None
        if self.out_dir is not None:
            os.makedirs(self.out_dir, exist_ok=True)
            if enable_tb:
                try:
                    from torch.utils.tensorboard import SummaryWriter

                    self.tb = SummaryWriter(log_dir=str(self.out_dir / "tb"))
                except Exception:
                    self.tb = None

    def info(self, message: str) -> None:
        if self.verbose:
            print(message)

    def open_table(self, name: str, columns: Sequence[str]) -> None:
        if self.out_dir is None or name in self._writers:
            return
        fh = (self.out_dir / f"{name}_log.csv").open("w", newline="", encoding="utf8")
        writer = csv.writer(fh)
        writer.writerow(list(columns))
        fh.flush()
        self._files[name] = fh
        self._writers[name] = writer

    def log(self, name: str, step: int, scalars: Dict[str, float]) -> None:
        writer = self._writers.get(name)
        if writer is not None:
            writer.writerow([step] + [scalars[key] for key in scalars])
            self._files[name].flush()  # type: ignore[attr-defined]
        if self.tb:
            for key, value in scalars.items():
                self.tb.add_scalar(f"{name}/{key}", value, step)

    def close(self) -> None:
        if self.tb:
            self.tb.close()
            self.tb = None
        for fh in self._files.values():
            fh.close()  # type: ignore[attr-defined]
        self._files.clear()
        self._writers.clear()

    def __enter__(self) -> "ConvergenceLogger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def null_logger() -> ConvergenceLogger:
    return ConvergenceLogger(None, verbose=False)


__all__ = ["ConvergenceLogger", "null_logger"]
