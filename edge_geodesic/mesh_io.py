"""
Mesh, source-list and distance-file I/O.

OBJ and OFF are parsed directly; VTK/VTP go through ``vtk`` when it is
installed. Every reader failure surfaces as :class:`MeshIOError`.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

import numpy as np

from .errors import MeshIOError


def load_obj_tri(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Minimal OBJ reader supporting ``v`` and ``f`` records (polygons are fanned)."""
    verts: List[List[float]] = []
    faces: List[List[int]] = []
    with open(path, "r", encoding="utf8") as fh:
        for line in fh:
            if not line or line.startswith("#"):
                continue
            if line.startswith("v "):
                _, xs, ys, zs = line.strip().split()[:4]
                verts.append([float(xs), float(ys), float(zs)])
            elif line.startswith("f "):
                parts = line.strip().split()[1:]
                idxs: List[int] = []
                for token in parts:
                    idx = token.split("/")[0]
                    if not idx:
                        raise ValueError(f"Malformed face token '{token}' in {path}.")
                    i = int(idx)
                    idxs.append(i - 1 if i > 0 else len(verts) + i)
                if len(idxs) < 3:
                    continue
                v0 = idxs[0]
                for a, b in zip(idxs[1:-1], idxs[2:]):
                    faces.append([v0, a, b])
    return (
        np.asarray(verts, dtype=np.float64).reshape(-1, 3),
        np.asarray(faces, dtype=np.int64).reshape(-1, 3),
    )


def load_off_tri(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """OFF reader; polygons with more than three corners are fanned."""
    with open(path, "r", encoding="utf8") as fh:
        tokens: List[str] = []
        for line in fh:
            line = line.split("#", 1)[0].strip()
            if line:
                tokens.extend(line.split())
    if not tokens or not tokens[0].upper().endswith("OFF"):
        raise ValueError(f"File {path} is missing the OFF header.")
    pos = 1
    n_verts, n_faces = int(tokens[pos]), int(tokens[pos + 1])
    pos += 3
    verts = np.asarray(tokens[pos:pos + 3 * n_verts], dtype=np.float64).reshape(n_verts, 3)
    pos += 3 * n_verts
    faces: List[List[int]] = []
    for _ in range(n_faces):
        count = int(tokens[pos])
        idxs = [int(t) for t in tokens[pos + 1:pos + 1 + count]]
        pos += 1 + count
        for a, b in zip(idxs[1:-1], idxs[2:]):
            faces.append([idxs[0], a, b])
    return verts, np.asarray(faces, dtype=np.int64).reshape(-1, 3)


def _load_vtk_triangular(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Load generic VTK/VTP meshes (polydata or unstructured) and triangulate."""
    try:
        import vtk  # type: ignore
        from vtk.util import numpy_support as vtk_np  # type: ignore
    except Exception as exc:  # pragma: no cover - VTK missing in minimal envs
        raise RuntimeError("Reading .vtk/.vtp meshes requires vtk (pip install vtk).") from exc

    suffix = Path(path).suffix.lower()
    if suffix == ".vtp":
        reader = vtk.vtkXMLPolyDataReader()
        reader.SetFileName(str(path))
        reader.Update()
        dataset = reader.GetOutput()
    else:
        generic = vtk.vtkGenericDataObjectReader()
        generic.SetFileName(str(path))
        generic.Update()
        dataset = generic.GetOutput()
    if dataset is None:
        raise ValueError(f"VTK reader produced no dataset for {path}.")
    if not isinstance(dataset, vtk.vtkPolyData):
        geom = vtk.vtkGeometryFilter()
        geom.SetInputData(dataset)
        geom.Update()
        dataset = geom.GetOutput()
    tri_filter = vtk.vtkTriangleFilter()
    tri_filter.SetInputData(dataset)
    tri_filter.PassLinesOff()
    tri_filter.PassVertsOff()
    tri_filter.Update()
    poly_tri = tri_filter.GetOutput()
    points = poly_tri.GetPoints()
    if points is None:
        raise ValueError(f"No point data found in {path}.")
    vertices_np = vtk_np.vtk_to_numpy(points.GetData()).astype(np.float64, copy=False)
    polys = poly_tri.GetPolys()
    n_cells = polys.GetNumberOfCells()
    if n_cells == 0:
        return vertices_np, np.zeros((0, 3), dtype=np.int64)
    cell_data = vtk_np.vtk_to_numpy(polys.GetData()).astype(np.int64, copy=False)
    cell_width = int(cell_data.size // n_cells)
    if cell_width != 4:
        raise ValueError("Triangulation produced unexpected face encoding.")
    faces_np = cell_data.reshape(n_cells, cell_width)[:, 1:]
    return vertices_np, faces_np


def load_mesh_any(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Load a triangle mesh from OBJ, OFF or VTK/VTP."""
    suffix = Path(path).suffix.lower()
    if not Path(path).exists():
        raise MeshIOError(f"Unable to read input mesh from the file {path}: file does not exist.")
    try:
        if suffix == ".obj":
            return load_obj_tri(path)
        if suffix == ".off":
            return load_off_tri(path)
        if suffix in {".vtp", ".vtk"}:
            return _load_vtk_triangular(path)
    except (OSError, ValueError, IndexError, RuntimeError) as exc:
        raise MeshIOError(f"Unable to read input mesh from the file {path}: {exc}") from exc
    raise MeshIOError(f"Unsupported mesh extension '{suffix}' (expected .obj/.off/.vtp/.vtk).")


def read_sources(path: str | Path) -> List[int]:
    sources: List[int] = []
    with open(path, "r", encoding="utf8") as fh:
        for line in fh:
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            sources.extend(int(tok) for tok in line.replace(",", " ").split())
    if not sources:
        raise ValueError(f"No source vertices found in {path}.")
    return sources


def write_distances(path: str | Path, distances: np.ndarray) -> None:
    """One value per line in vertex order; ``.npy`` paths are written with numpy."""
    values = np.asarray(distances, dtype=np.float64).reshape(-1)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".npy":
        np.save(path, values)
        return
    with open(path, "w", encoding="utf8") as fh:
        for v in values:
            fh.write(f"{v:.17g}\n")


def read_distances(path: str | Path) -> np.ndarray:
    path = Path(path)
    if path.suffix.lower() == ".npy":
        return np.load(path).astype(np.float64).reshape(-1)
    values: List[float] = []
    with open(path, "r", encoding="utf8") as fh:
        for line in fh:
            line = line.strip()
            if line:
                values.append(float(line))
    return np.asarray(values, dtype=np.float64)


__all__ = [
    "load_obj_tri",
    "load_off_tri",
    "load_mesh_any",
    "read_sources",
    "write_distances",
    "read_distances",
]
