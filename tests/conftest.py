"""Shared mesh fixtures for the edge_geodesic tests.

All meshes are small procedural triangulations so every test runs on CPU in
well under a second.
"""

import numpy as np
import pytest


### Mesh builders ###


def make_grid(n: int, size: float = 1.0, jitter: float = 0.0, seed: int = 0):
    """Planar ``n x n`` vertex grid on ``[0, size]^2``, two triangles per cell.

    Vertex ``i * n + j`` sits at ``(j, i) * size / (n - 1)``. Every cell is
    split along the diagonal from ``(i, j)`` to ``(i + 1, j + 1)``. ``jitter``
    moves interior vertices by up to that fraction of the spacing.
    """

    step = size / (n - 1)
    ys, xs = np.meshgrid(np.arange(n), np.arange(n), indexing="ij")
    V = np.stack([xs.ravel() * step, ys.ravel() * step, np.zeros(n * n)], axis=1).astype(np.float64)
    if jitter > 0.0:
        rng = np.random.RandomState(seed)
        interior = (xs.ravel() > 0) & (xs.ravel() < n - 1) & (ys.ravel() > 0) & (ys.ravel() < n - 1)
        V[interior, :2] += rng.uniform(-jitter, jitter, size=(int(interior.sum()), 2)) * step
    faces = []
    for i in range(n - 1):
        for j in range(n - 1):
            a = i * n + j
            b = a + 1
            c = a + n + 1
            d = a + n
            faces.append([a, b, c])
            faces.append([a, c, d])
    return V, np.asarray(faces, dtype=np.int64)


### Fixtures ###


@pytest.fixture
def unit_square():
    """Two triangles sharing the diagonal ``0-2`` of the unit square."""

    V = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
        dtype=np.float64,
    )
    F = np.array([[0, 1, 2], [0, 2, 3]], dtype=np.int64)
    return V, F


@pytest.fixture
def tetrahedron():
    """Closed regular tetrahedron with consistently oriented faces."""

    V = np.array(
        [[1.0, 1.0, 1.0], [1.0, -1.0, -1.0], [-1.0, 1.0, -1.0], [-1.0, -1.0, 1.0]],
        dtype=np.float64,
    )
    F = np.array([[0, 1, 2], [0, 3, 1], [0, 2, 3], [1, 3, 2]], dtype=np.int64)
    return V, F


@pytest.fixture
def square_and_island(unit_square):
    """The unit square plus a separate triangle no vertex of the square can reach."""

    V, F = unit_square
    island = np.array([[5.0, 0.0, 0.0], [6.0, 0.0, 0.0], [5.0, 1.0, 0.0]], dtype=np.float64)
    V2 = np.concatenate([V, island], axis=0)
    F2 = np.concatenate([F, np.array([[4, 5, 6]], dtype=np.int64)], axis=0)
    return V2, F2


@pytest.fixture
def grid():
    """Factory fixture for :func:`make_grid`."""

    return make_grid
