"""Tests for the ``edge-geodesic`` command line front-end."""

import json

import numpy as np
import pytest

from edge_geodesic.cli import main
from edge_geodesic.mesh_io import read_distances


@pytest.fixture
def grid_obj(tmp_path, grid):
    V, F = grid(5)
    path = tmp_path / "grid.obj"
    with open(path, "w", encoding="utf8") as fh:
        for x, y, z in V:
            fh.write(f"v {x} {y} {z}\n")
        for a, b, c in F:
            fh.write(f"f {a + 1} {b + 1} {c + 1}\n")
    return path


def test_solve_writes_one_value_per_vertex(tmp_path, grid_obj, capsys):
    out = tmp_path / "dist.txt"
    rc = main(["solve", "--mesh", str(grid_obj), "--source", "0", "--out", str(out)])
    assert rc == 0
    d = read_distances(out)
    assert d.shape == (25,)
    assert d[0] == 0.0
    assert np.all(d[1:] > 0.0)
    assert "Wrote 25 distance values" in capsys.readouterr().out


def test_solve_with_sources_file_and_quiet(tmp_path, grid_obj, capsys):
    sources = tmp_path / "sources.txt"
    sources.write_text("0\n24\n")
    out = tmp_path / "dist.npy"
    rc = main(["solve", "--mesh", str(grid_obj), "--sources", str(sources), "--out", str(out), "--quiet"])
    assert rc == 0
    d = read_distances(out)
    assert d[0] == 0.0 and d[24] == 0.0
    assert capsys.readouterr().out == ""


def test_solve_from_config_file(tmp_path, grid_obj):
    out = tmp_path / "dist.txt"
    cfg = tmp_path / "run.json"
    cfg.write_text(
        json.dumps(
            {
                "mesh": str(grid_obj),
                "out": str(out),
                "source_vertices": [12],
                "grad_solver_max_iter": 200,
                "verbose": False,
            }
        )
    )
    assert main(["solve", "--config", str(cfg)]) == 0
    d = read_distances(out)
    assert d[12] == 0.0
    assert d.shape == (25,)


def test_tensorboard_flag(tmp_path, grid_obj):
    pytest.importorskip("torch.utils.tensorboard")
    logs = tmp_path / "logs"
    argv = ["solve", "--mesh", str(grid_obj), "--source", "0", "--out", str(tmp_path / "d.txt")]
    argv += ["--log-dir", str(logs), "--tensorboard", "--quiet"]
    assert main(argv) == 0
    assert (logs / "admm_log.csv").exists()
    assert list((logs / "tb").glob("events.out.tfevents.*"))


def test_unknown_config_key(tmp_path, grid_obj):
    cfg = tmp_path / "run.json"
    cfg.write_text(json.dumps({"mesh": str(grid_obj), "out": "x.txt", "tolerance": 1.0}))
    with pytest.raises(ValueError, match="tolerance"):
        main(["solve", "--config", str(cfg), "--source", "0"])


def test_missing_out_option(grid_obj):
    with pytest.raises(ValueError, match="out"):
        main(["solve", "--mesh", str(grid_obj), "--source", "0"])


def test_missing_mesh_file_returns_error(tmp_path, capsys):
    rc = main(["solve", "--mesh", str(tmp_path / "none.obj"), "--source", "0", "--out", str(tmp_path / "d.txt")])
    assert rc == 1
    assert "Error:" in capsys.readouterr().err
    assert not (tmp_path / "d.txt").exists()


def test_coincident_vertices_return_error(tmp_path, capsys):
    mesh = tmp_path / "point.obj"
    mesh.write_text("v 1 1 1\nv 1 1 1\nv 1 1 1\nf 1 2 3\n")
    rc = main(["solve", "--mesh", str(mesh), "--source", "0", "--out", str(tmp_path / "d.txt"), "--quiet"])
    assert rc == 1
    assert "degenerate" in capsys.readouterr().err


def test_compare_against_itself(tmp_path, capsys):
    path = tmp_path / "d.txt"
    path.write_text("0\n1.5\n2.25\n")
    assert main(["compare", "--computed", str(path), "--reference", str(path)]) == 0
    out = capsys.readouterr().out
    assert "Compared vertices: 2" in out
    assert "Mean absolute error: 0" in out


def test_compare_with_nothing_comparable(tmp_path, capsys):
    path = tmp_path / "d.txt"
    path.write_text("0\ninf\n")
    assert main(["compare", "--computed", str(path), "--reference", str(path)]) == 1
    assert "Compared vertices: 0" in capsys.readouterr().out
