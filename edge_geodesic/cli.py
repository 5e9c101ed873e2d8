"""CLI entry point: ``solve`` geodesic distances and ``compare`` distance files."""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, List, Optional, Sequence

from .compare import compare_distances
from .config import SolverParameters, load_config_mapping, parameter_names, parameters_from_mapping
from .mesh_io import read_distances, read_sources, write_distances
from .solver import GeodesicSolver


_DEFAULTS = SolverParameters()
_IO_KEYS = ["mesh", "sources_file", "out"]


def _snapshot_defaults(parser: argparse.ArgumentParser, attr_name: str) -> None:
    defaults: Dict[str, Any] = {}
    for action in parser._actions:
        dest = getattr(action, "dest", None)
        if not dest or dest == "help" or dest is argparse.SUPPRESS:
            continue
        defaults[dest] = action.default
    parser.set_defaults(**{attr_name: defaults})


def _merge_config(namespace: argparse.Namespace, defaults: Dict[str, Any], config: Dict[str, Any], valid_keys: Sequence[str]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    if config:
        for key in valid_keys:
            if key in config:
                merged[key] = config[key]
    for key in valid_keys:
        if not hasattr(namespace, key):
            continue
        value = getattr(namespace, key)
        default_value = defaults.get(key)
        if key in merged:
            if value != default_value:
                merged[key] = value
        else:
            if value != default_value and value is not None:
                merged[key] = value
    return merged


def _add_solve_parser(sub: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = sub.add_parser("solve", help="Compute geodesic distances from source vertices.")
    parser.add_argument("--config", type=str, default=None, help="Path to JSON/YAML config overriding defaults.")
    parser.add_argument("--mesh", type=str, default=None, help="Input mesh (.obj/.off/.vtp/.vtk).")
    parser.add_argument("--sources", type=str, default=None, dest="sources_file", help="Text file with one source index per line.")
    parser.add_argument("--source", type=int, nargs="+", default=None, dest="source_vertices", help="Source vertex indices.")
    parser.add_argument("--out", type=str, default=None, help="Output distance file (.txt or .npy).")
    parser.add_argument("--heat-eps", type=float, default=_DEFAULTS.heat_solver_eps, dest="heat_solver_eps", help="Relative residual tolerance of the Gauss-Seidel heat solve.")
    parser.add_argument("--heat-max-iter", type=int, default=_DEFAULTS.heat_solver_max_iter, dest="heat_solver_max_iter", help="Maximum Gauss-Seidel sweeps.")
    parser.add_argument("--heat-check-every", type=int, default=_DEFAULTS.heat_solver_convergence_check_frequency, dest="heat_solver_convergence_check_frequency", help="Sweeps between residual checks.")
    parser.add_argument("--grad-eps", type=float, default=_DEFAULTS.grad_solver_eps, dest="grad_solver_eps", help="ADMM residual tolerance (squared for primal and dual).")
    parser.add_argument("--grad-max-iter", type=int, default=_DEFAULTS.grad_solver_max_iter, dest="grad_solver_max_iter", help="Maximum ADMM iterations.")
    parser.add_argument("--grad-check-every", type=int, default=_DEFAULTS.grad_solver_convergence_check_frequency, dest="grad_solver_convergence_check_frequency", help="ADMM iterations between residual checks.")
    parser.add_argument("--grad-output-every", type=int, default=_DEFAULTS.grad_solver_output_frequency, dest="grad_solver_output_frequency", help="ADMM iterations between progress reports.")
    parser.add_argument("--penalty", type=float, default=_DEFAULTS.penalty, help="ADMM penalty parameter.")
    parser.add_argument("--heat-dtype", type=str, choices=["float32", "float64"], default=_DEFAULTS.heat_dtype, dest="heat_dtype", help="Scalar type of the heat solve.")
    parser.add_argument(
        "--device",
        type=str,
        default=_DEFAULTS.device,
        help="Device for solves (auto, cpu, cuda, cuda:<idx>, or mps).",
    )
    parser.add_argument("--workers", type=int, default=None, dest="num_workers", help="Worker threads (default: all cores).")
    parser.add_argument("--unreached", type=float, default=_DEFAULTS.unreached_distance, dest="unreached_distance", help="Distance written for vertices no source reaches.")
    parser.add_argument("--log-dir", type=str, default=None, dest="log_dir", help="Directory for CSV convergence logs.")
    parser.add_argument("--tensorboard", action="store_true", default=False, help="Mirror convergence scalars to TensorBoard under <log-dir>/tb.")
    parser.add_argument("--quiet", action="store_false", dest="verbose", default=True, help="Suppress progress output.")
    _snapshot_defaults(parser, "_solve_defaults")
    return parser


def _add_compare_parser(sub: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = sub.add_parser("compare", help="Compare a computed distance file with a reference.")
    parser.add_argument("--computed", type=str, required=True, help="Computed distance file.")
    parser.add_argument("--reference", type=str, required=True, help="Reference distance file.")
    parser.add_argument("--sources", type=str, default=None, dest="sources_file", help="Optional sources file; sources are excluded.")
    return parser


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallel heat-method geodesic distances with ADMM gradient integration.")
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_solve_parser(sub)
    _add_compare_parser(sub)
    return parser


def _run_solve(args: argparse.Namespace) -> int:
    defaults = getattr(args, "_solve_defaults", {}) or {}
    if hasattr(args, "_solve_defaults"):
        delattr(args, "_solve_defaults")
    config_data: Dict[str, Any] = {}
    if getattr(args, "config", None):
        config_data = load_config_mapping(args.config)

    valid_keys: List[str] = _IO_KEYS + parameter_names()
    unknown = sorted(key for key in config_data if key not in valid_keys)
    if unknown:
        raise ValueError("Unknown config key(s): " + ", ".join(unknown) + ".")
    merged = _merge_config(args, defaults, config_data, valid_keys)

    missing = [key for key in ("mesh", "out") if not merged.get(key)]
    if missing:
        raise ValueError("Missing required option(s): " + ", ".join(missing) + ".")

    sources = list(merged.pop("source_vertices", None) or [])
    sources_file = merged.pop("sources_file", None)
    if sources_file:
        sources.extend(read_sources(sources_file))
    if not sources:
        raise ValueError("No source vertices given (use --source or --sources).")
    mesh_path = merged.pop("mesh")
    out_path = merged.pop("out")

    params = parameters_from_mapping(dict(merged, source_vertices=sources))
    result = GeodesicSolver().solve(mesh_path, params)
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    write_distances(out_path, result.distances)
    if params.verbose:
        print(f"Wrote {result.distances.shape[0]} distance values to {out_path}.")
    return 0


def _run_compare(args: argparse.Namespace) -> int:
    computed = read_distances(args.computed)
    reference = read_distances(args.reference)
    sources = read_sources(args.sources_file) if args.sources_file else None
    err = compare_distances(computed, reference, sources=sources)
    print(f"Compared vertices: {err.n_compared}")
    print(f"Mean absolute error: {err.mean_abs_error:.6g}")
    print(f"Max absolute error: {err.max_abs_error:.6g}")
    print(f"Mean relative error: {err.mean_relative_error:.6g}")
    print(f"Max relative error: {err.max_relative_error:.6g}")
    if err.n_compared == 0:
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_argparser()
    args = parser.parse_args(argv)

    if args.cmd == "solve":
        return _run_solve(args)
    if args.cmd == "compare":
        return _run_compare(args)
    raise ValueError(f"Unknown command {args.cmd!r}")


if __name__ == "__main__":
    sys.exit(main())
