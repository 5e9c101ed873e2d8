"""End-to-end tests of the geodesic distance solver."""

import math

import numpy as np
import pytest
import torch

from edge_geodesic import (
    GeodesicSolver,
    InvalidMeshError,
    InvalidSourceVertexError,
    MeshIOError,
    SolverParameters,
    TriangleMesh,
    compare_distances,
    geodesic_distance,
    solve_geodesic_distance,
)
from edge_geodesic.logger import null_logger
from edge_geodesic.parallel import ForkJoinPool
from edge_geodesic.solver import make_context, run_phases

ACCURATE = dict(
    heat_solver_eps=1e-10,
    heat_solver_max_iter=2000,
    grad_solver_eps=1e-6,
    grad_solver_max_iter=5000,
)


def _write_obj(path, V, F):
    with open(path, "w", encoding="utf8") as fh:
        for x, y, z in V:
            fh.write(f"v {x} {y} {z}\n")
        for a, b, c in F:
            fh.write(f"f {a + 1} {b + 1} {c + 1}\n")


def _euclidean(V, source):
    return np.linalg.norm(V - V[source], axis=1)


### Small exact cases ###


def test_unit_square_corner_source(unit_square):
    V, F = unit_square
    d = geodesic_distance(V, F, [0], **ACCURATE)
    assert d.shape == (4,)
    assert d[0] == 0.0
    assert d[1] == pytest.approx(d[3], rel=1e-9)
    assert d[1] == pytest.approx(1.0, rel=0.1)
    assert d[3] == pytest.approx(1.0, rel=0.1)
    assert d[2] == pytest.approx(math.sqrt(2.0), rel=0.1)
    assert d[2] > d[1]


def test_tetrahedron_symmetric_distances(tetrahedron):
    V, F = tetrahedron
    d = geodesic_distance(V, F, [0], **ACCURATE)
    edge = 2.0 * math.sqrt(2.0)
    assert d[0] == 0.0
    assert np.allclose(d[1:], d[1], rtol=1e-3)
    assert d[1] == pytest.approx(edge, rel=0.2)


def test_sources_zero_and_others_non_negative(grid):
    V, F = grid(9)
    d = geodesic_distance(V, F, [0, 40, 80], **ACCURATE)
    assert d[[0, 40, 80]].tolist() == [0.0, 0.0, 0.0]
    assert np.all(np.isfinite(d))
    assert np.all(d >= 0.0)


### Accuracy on planar grids ###


def test_planar_grid_matches_euclidean(grid):
    n = 21
    V, F = grid(n)
    center = (n // 2) * n + n // 2
    d = geodesic_distance(V, F, [center], **ACCURATE)
    ref = _euclidean(V, center)
    far = ref > 0.25
    rel = np.abs(d[far] - ref[far]) / ref[far]
    assert rel.mean() < 0.1
    err = compare_distances(d, ref, sources=[center])
    assert err.n_compared == n * n - 1
    assert err.mean_relative_error < 0.15


def test_error_shrinks_with_refinement(grid):
    errors = []
    for n in (11, 21):
        V, F = grid(n)
        center = (n // 2) * n + n // 2
        d = geodesic_distance(V, F, [center], **ACCURATE)
        errors.append(compare_distances(d, _euclidean(V, center), sources=[center]).mean_abs_error)
    coarse, fine = errors
    assert fine <= 1.25 * coarse


def test_two_sources_take_the_nearer(grid):
    n = 11
    V, F = grid(n)
    last = n * n - 1
    d = geodesic_distance(V, F, [0, last], **ACCURATE)
    # Corners (0, 10) and (10, 0) sit at unit distance from both sources.
    assert d[n - 1] == pytest.approx(1.0, rel=0.2)
    assert d[last - (n - 1)] == pytest.approx(1.0, rel=0.2)
    assert d[n - 1] == pytest.approx(d[last - (n - 1)], rel=0.02)
    single = geodesic_distance(V, F, [0], **ACCURATE)
    assert d[last - 1] < single[last - 1]


def test_distances_invariant_to_mesh_scale(grid):
    V, F = grid(7, jitter=0.2)
    d1 = geodesic_distance(V, F, [3], **ACCURATE)
    d2 = geodesic_distance(V * 10.0, F, [3], **ACCURATE)
    assert np.allclose(d2, 10.0 * d1, rtol=1e-6, atol=1e-8)


### Determinism and parallelism ###


def test_repeated_solves_are_identical(grid):
    V, F = grid(8, jitter=0.2)
    a = geodesic_distance(V, F, [5], num_workers=1)
    b = geodesic_distance(V, F, [5], num_workers=1)
    assert np.array_equal(a, b)


def test_duplicate_sources_are_merged(grid):
    V, F = grid(6)
    a = geodesic_distance(V, F, [7])
    b = geodesic_distance(V, F, [7, 7, 7])
    assert np.array_equal(a, b)


def test_threaded_phases_match_inline(grid):
    V, F = grid(10, jitter=0.2)
    mesh = TriangleMesh(V, F)
    params = SolverParameters(source_vertices=[0], verbose=False).validate()
    with ForkJoinPool(1) as pool:
        inline = run_phases(make_context(mesh, params, pool, null_logger()))
    with ForkJoinPool(4, min_chunk=8) as pool:
        threaded = run_phases(make_context(mesh, params, pool, null_logger()))
    assert torch.allclose(inline, threaded, rtol=1e-6, atol=1e-9)


def test_single_precision_heat(grid):
    V, F = grid(9)
    d64 = geodesic_distance(V, F, [40], **ACCURATE)
    d32 = geodesic_distance(V, F, [40], **dict(ACCURATE, heat_solver_eps=1e-5, heat_dtype="float32"))
    assert d32.dtype == np.float64
    assert np.allclose(d32, d64, rtol=0.02, atol=1e-3)


### Unreached vertices ###


def test_unreached_component_gets_sentinel(square_and_island):
    V, F = square_and_island
    d = geodesic_distance(V, F, [0])
    assert np.all(np.isinf(d[4:]))
    assert np.all(np.isfinite(d[:4]))

    d = geodesic_distance(V, F, [0], unreached_distance=-1.0)
    assert d[4:].tolist() == [-1.0, -1.0, -1.0]


### Input validation ###


@pytest.mark.parametrize("bad", [-1, 4, 100])
def test_out_of_range_source_raises(unit_square, bad):
    mesh = TriangleMesh(*unit_square)
    params = SolverParameters(source_vertices=[0, bad], verbose=False)
    with pytest.raises(InvalidSourceVertexError) as info:
        solve_geodesic_distance(mesh, params)
    assert info.value.index == bad


def test_isolated_source_vertex_raises(unit_square):
    V, F = unit_square
    V = np.concatenate([V, [[3.0, 3.0, 0.0]]], axis=0)
    mesh = TriangleMesh(V, F)
    params = SolverParameters(source_vertices=[4], verbose=False)
    with pytest.raises(InvalidSourceVertexError):
        solve_geodesic_distance(mesh, params)


def test_empty_source_list_raises(unit_square):
    mesh = TriangleMesh(*unit_square)
    with pytest.raises(ValueError):
        solve_geodesic_distance(mesh, SolverParameters(verbose=False))


### File front-end ###


def test_solver_reads_mesh_file(tmp_path, grid):
    V, F = grid(6)
    path = tmp_path / "grid.obj"
    _write_obj(path, V, F)
    params = SolverParameters(source_vertices=[0], verbose=False, log_dir=str(tmp_path / "logs"))
    solver = GeodesicSolver()
    result = solver.solve(path, params)
    assert result.ok
    assert result.distances.shape == (36,)
    assert result.heat_sweeps > 0
    assert result.admm_iterations > 0
    assert {"bfs", "gauss_seidel", "admm", "integration", "total"} <= set(result.timings)
    assert (tmp_path / "logs" / "heat_log.csv").exists()
    assert (tmp_path / "logs" / "admm_log.csv").exists()
    assert solver.last_context is not None
    assert solver.last_context.scale == pytest.approx(math.sqrt(2.0))


def test_tensorboard_mirror(tmp_path, unit_square):
    pytest.importorskip("torch.utils.tensorboard")
    mesh = TriangleMesh(*unit_square)
    logs = tmp_path / "logs"
    params = SolverParameters(source_vertices=[0], verbose=False, log_dir=str(logs), tensorboard=True)
    result = GeodesicSolver().solve(mesh, params)
    assert result.ok
    assert list((logs / "tb").glob("events.out.tfevents.*"))


def test_tensorboard_off_by_default(tmp_path, unit_square):
    mesh = TriangleMesh(*unit_square)
    logs = tmp_path / "logs"
    result = GeodesicSolver().solve(mesh, SolverParameters(source_vertices=[0], verbose=False, log_dir=str(logs)))
    assert result.ok
    assert (logs / "heat_log.csv").exists()
    assert not (logs / "tb").exists()


def test_solver_reports_missing_file(tmp_path):
    result = GeodesicSolver().solve(tmp_path / "missing.obj", SolverParameters(source_vertices=[0], verbose=False))
    assert not result.ok
    assert result.distances is None
    assert isinstance(result.error, MeshIOError)


def test_solver_reports_coincident_vertices(tmp_path):
    path = tmp_path / "point.obj"
    path.write_text("v 1 1 1\nv 1 1 1\nv 1 1 1\nf 1 2 3\n")
    result = GeodesicSolver().solve(path, SolverParameters(source_vertices=[0], verbose=False))
    assert not result.ok
    assert result.distances is None
    assert isinstance(result.error, InvalidMeshError)
    assert "degenerate" in str(result.error)


def test_coincident_vertices_raise_before_solving():
    mesh = TriangleMesh(np.ones((3, 3)), np.array([[0, 1, 2]]))
    with pytest.raises(InvalidMeshError):
        solve_geodesic_distance(mesh, SolverParameters(source_vertices=[0], verbose=False))


def test_solver_reports_bad_source(tmp_path, unit_square):
    path = tmp_path / "square.obj"
    _write_obj(path, *unit_square)
    result = GeodesicSolver().solve(path, SolverParameters(source_vertices=[9], verbose=False))
    assert not result.ok
    assert isinstance(result.error, InvalidSourceVertexError)
    assert "Invalid source vertex index 9" in str(result.error)


def test_verbose_progress_output(capsys, unit_square):
    mesh = TriangleMesh(*unit_square)
    solve_geodesic_distance(mesh, SolverParameters(source_vertices=[0]))
    out = capsys.readouterr().out
    assert "Initialize BFS path......" in out
    assert "Initial residual:" in out
    assert "====== Timing ======" in out
    assert "Total time:" in out


def test_quiet_by_default_for_array_wrapper(capsys, unit_square):
    geodesic_distance(*unit_square, [0])
    assert capsys.readouterr().out == ""
