"""
Solver parameters and config-file loading.

Parameters can come from a JSON/YAML object whose keys match the fields of
:class:`SolverParameters`; the command line front-end merges its own
overrides on top.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from dataclasses import fields as dataclass_fields
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class SolverParameters:
    source_vertices: List[int] = field(default_factory=list)
    heat_solver_eps: float = 1.0e-6
    heat_solver_max_iter: int = 50
    heat_solver_convergence_check_frequency: int = 1
    grad_solver_eps: float = 1.0e-6
    grad_solver_max_iter: int = 1000
    grad_solver_convergence_check_frequency: int = 10
    grad_solver_output_frequency: int = 100
    penalty: float = 1.0
    heat_dtype: str = "float64"
    device: str = "cpu"
    num_workers: Optional[int] = None
    unreached_distance: float = math.inf
    verbose: bool = True
    log_dir: Optional[str] = None
    tensorboard: bool = False

    def validate(self) -> "SolverParameters":
        """Check scalar options and drop duplicate sources (first occurrence wins)."""

        if not self.source_vertices:
            raise ValueError("At least one source vertex is required.")
        for name in ("heat_solver_eps", "grad_solver_eps", "penalty"):
            value = float(getattr(self, name))
            if not value > 0.0:
                raise ValueError(f"Parameter '{name}' must be positive, got {value}.")
        for name in (
            "heat_solver_max_iter",
            "heat_solver_convergence_check_frequency",
            "grad_solver_max_iter",
            "grad_solver_convergence_check_frequency",
            "grad_solver_output_frequency",
        ):
            value = int(getattr(self, name))
            if value <= 0:
                raise ValueError(f"Parameter '{name}' must be a positive integer, got {value}.")

        unique: List[int] = []
        seen = set()
        for v in self.source_vertices:
            idx = int(v)
            if idx in seen:
                continue
            seen.add(idx)
            unique.append(idx)
        if len(unique) != len(self.source_vertices) and self.verbose:
            print(
                f"Warning: removed {len(self.source_vertices) - len(unique)} duplicate source vertex index(es)."
            )
        self.source_vertices = unique
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parameter_names() -> List[str]:
    return [f.name for f in dataclass_fields(SolverParameters)]


def load_config_mapping(path: str | Path) -> Dict[str, Any]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file '{path}' not found.")
    suffix = cfg_path.suffix.lower()
    text = cfg_path.read_text(encoding="utf8")
    if suffix in {".yml", ".yaml"}:
        try:
            import yaml  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to read YAML config files.") from exc
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a JSON/YAML object.")
    return data  # type: ignore[return-value]


def parameters_from_mapping(data: Dict[str, Any]) -> SolverParameters:
    valid = set(parameter_names())
    unknown = sorted(key for key in data if key not in valid)
    if unknown:
        raise ValueError("Unknown solver parameter(s): " + ", ".join(unknown) + ".")
    values = dict(data)
    if "source_vertices" in values:
        values["source_vertices"] = [int(v) for v in values["source_vertices"]]
    if "unreached_distance" in values:
        values["unreached_distance"] = float(values["unreached_distance"])
    return SolverParameters(**values)


def load_parameters(path: str | Path) -> SolverParameters:
    return parameters_from_mapping(load_config_mapping(path))


__all__ = [
    "SolverParameters",
    "parameter_names",
    "load_config_mapping",
    "parameters_from_mapping",
    "load_parameters",
]
