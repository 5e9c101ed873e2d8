"""
Error taxonomy for input validation.

All of these are raised before any numerical phase starts; once solving has
begun there are no recoverable error states.
"""

from __future__ import annotations


class GeodesicError(Exception):
    """Base class for failures reported by the geodesic solver front-end."""


class MeshIOError(GeodesicError, IOError):
    """The mesh file could not be read."""


class InvalidMeshError(GeodesicError, ValueError):
    """The mesh has zero vertices, faces or edges, or malformed faces."""


class InvalidSourceVertexError(GeodesicError, ValueError):
    """A source index lies outside ``[0, n_vertices)`` or touches no face."""

    def __init__(self, index: int, n_vertices: int, reason: str | None = None) -> None:
        self.index = int(index)
        self.n_vertices = int(n_vertices)
        detail = reason or f"expected an index in [0, {n_vertices})"
        super().__init__(f"Invalid source vertex index {index}: {detail}.")


__all__ = [
    "GeodesicError",
    "MeshIOError",
    "InvalidMeshError",
    "InvalidSourceVertexError",
]
