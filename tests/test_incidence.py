"""Tests for the face-corner/edge incidence tables and transition codes."""

import torch

from edge_geodesic import TriangleMesh
from edge_geodesic.incidence import (
    build_incidence,
    decode_transition,
    encode_transition,
    initial_edge_values,
)
from edge_geodesic.operators import compute_geometry
from edge_geodesic.spanning import build_spanning_order


def _tables(V, F, sources, gradient=None):
    mesh = TriangleMesh(V, F)
    order = build_spanning_order(mesh, sources)
    geo = compute_geometry(mesh)
    if gradient is None:
        gradient = torch.zeros((mesh.n_faces, 3), dtype=torch.float64)
    return mesh, order, geo, build_incidence(mesh, order, geo.edge_vectors, gradient)


### Transition codes ###


def test_transition_code_roundtrip():
    edge = torch.tensor([0, 3, 7, 12])
    canonical = torch.tensor([True, False, True, False])
    code = encode_transition(edge, canonical)
    assert code.tolist() == [0, -4, 7, -13]
    back, forward = decode_transition(code)
    assert torch.equal(back, edge)
    assert torch.equal(forward, canonical)


def test_transition_table_matches_spanning_order(grid):
    mesh, order, _, tables = _tables(*grid(5), [12])
    assert tables.transition_code[0] == -1
    assert torch.equal(tables.transition_from, order.predecessor)
    edge, forward = decode_transition(tables.transition_code[1:])
    assert torch.equal(edge, order.predecessor_edge[1:])
    assert torch.equal(forward, order.predecessor_canonical[1:])


### Row tables ###


def test_edge_row_counts(grid):
    mesh, _, _, tables = _tables(*grid(4), [0])
    assert torch.equal(tables.edge_row_count, mesh.edge_face_count)
    boundary = mesh.boundary_edge_mask()
    assert bool((tables.edge_rows[boundary, 1] == -1).all())
    assert bool((tables.edge_rows[~boundary, 1] > tables.edge_rows[~boundary, 0]).all())
    assert int(tables.edge_row_count.sum()) == 3 * mesh.n_faces
    rows = tables.edge_rows[tables.edge_rows >= 0]
    assert torch.equal(torch.sort(rows).values, torch.arange(3 * mesh.n_faces))


def test_rows_reference_their_edge(grid):
    mesh, _, _, tables = _tables(*grid(4), [0])
    S = tables.S.reshape(-1)
    for e in range(mesh.n_edges):
        for r in tables.edge_rows[e].tolist():
            if r >= 0:
                assert int(S[r]) == e


def test_orientation_signs(unit_square):
    mesh, _, _, tables = _tables(*unit_square, [0])
    expected = mesh.halfedge_is_canonical.to(torch.float64) * 2 - 1
    assert torch.equal(tables.Q.reshape(-1), expected)
    assert tables.Q[0].tolist() == [1.0, 1.0, 1.0]
    assert tables.Q[1, 0].item() == -1.0


### Targets ###


def test_constant_gradient_gives_integrable_targets(grid):
    """A linear potential g.x yields Z[e] = phi(b) - phi(a) and sums to zero around faces."""

    V, F = grid(5, jitter=0.2)
    g = torch.tensor([0.6, 0.8, 0.0], dtype=torch.float64)
    mesh = TriangleMesh(V, F)
    grad = g.expand(mesh.n_faces, 3).clone()
    _, _, _, tables = _tables(V, F, [0], grad)

    phi = mesh.vertices @ g
    ev = mesh.edge_vertices
    exact = phi[ev[:, 1]] - phi[ev[:, 0]]
    assert torch.allclose(tables.Z, exact[tables.S.reshape(-1)], atol=1e-14)

    X = initial_edge_values(tables)
    assert torch.allclose(X, exact, atol=1e-14)
    loop = (tables.Q * X[tables.S]).sum(dim=1)
    assert torch.allclose(loop, torch.zeros_like(loop), atol=1e-14)


def test_initial_values_average_both_faces(unit_square):
    mesh = TriangleMesh(*unit_square)
    grad = torch.tensor([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], dtype=torch.float64)
    _, _, _, tables = _tables(*unit_square, [0], grad)
    X = initial_edge_values(tables)
    diag = int(mesh.halfedge_edge[2])
    # Edge 2 -> 0 has vector (-1, -1, 0): targets -1 and -1 average to -1.
    assert float(X[diag]) == -1.0
    e01 = int(mesh.halfedge_edge[0])
    assert float(X[e01]) == 1.0
    e12 = int(mesh.halfedge_edge[1])
    assert float(X[e12]) == 0.0
