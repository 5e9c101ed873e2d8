"""Parallel heat-method geodesic distances with ADMM gradient integration."""

from .config import (
    SolverParameters,
    load_parameters,
)
from .errors import (
    GeodesicError,
    MeshIOError,
    InvalidMeshError,
    InvalidSourceVertexError,
)
from .mesh import TriangleMesh
from .mesh_io import (
    load_mesh_any,
    read_sources,
    read_distances,
    write_distances,
)
from .solver import (
    GeodesicSolver,
    SolveResult,
    solve_geodesic_distance,
    geodesic_distance,
)
from .compare import compare_distances

__all__ = [
    "SolverParameters",
    "load_parameters",
    "GeodesicError",
    "MeshIOError",
    "InvalidMeshError",
    "InvalidSourceVertexError",
    "TriangleMesh",
    "load_mesh_any",
    "read_sources",
    "read_distances",
    "write_distances",
    "GeodesicSolver",
    "SolveResult",
    "solve_geodesic_distance",
    "geodesic_distance",
    "compare_distances",
]
