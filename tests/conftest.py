"""Shared foam fixtures.

Small foams are built from a Delaunay triangulation of random sites: the
Delaunay neighbors of a site are exactly the faces of its Voronoi cell.
"""

import numpy as np
import pytest
from scipy.spatial import Delaunay

from foam_raymarcher.foam.store import FoamStore


def make_delaunay_foam(points, density=None, colors=None, sh_rest=None):
    """FoamStore whose adjacency is the Delaunay graph of ``points``."""
    points = np.asarray(points, dtype=np.float32)
    indptr, indices = Delaunay(points.astype(np.float64)).vertex_neighbor_vertices
    n_cells = points.shape[0]
    if density is None:
        density = np.zeros(n_cells, dtype=np.float32)
    if colors is None:
        colors = np.full((n_cells, 3), 128, dtype=np.uint8)
    return FoamStore(
        positions=points,
        adjacency_offset=indptr[1:],
        adjacency=indices,
        density=density,
        colors=colors,
        sh_rest=sh_rest,
    )


@pytest.fixture
def random_foam():
    """Foam of 200 random sites in [-1, 1]^3 with random attributes."""
    rng = np.random.default_rng(7)
    points = rng.uniform(-1.0, 1.0, size=(200, 3))
    return make_delaunay_foam(
        points,
        density=rng.uniform(0.0, 2.0, size=200),
        colors=rng.integers(0, 256, size=(200, 3)),
        sh_rest=rng.normal(0.0, 0.1, size=(200, 3, 3)),
    )


@pytest.fixture
def two_cell_foam():
    """Two cells sharing the face x = 0; cell 0 absorbs, cell 1 is clear."""
    return FoamStore(
        positions=[[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
        adjacency_offset=[1, 2],
        adjacency=[1, 0],
        density=[1.0, 0.0],
        colors=[[255, 128, 0], [0, 0, 255]],
    )


@pytest.fixture
def isolated_cell_foam():
    """A single cell without faces."""
    return FoamStore(
        positions=[[0.0, 0.0, 0.0]],
        adjacency_offset=[0],
        adjacency=np.zeros(0, dtype=np.uint32),
        density=[0.5],
        colors=[[51, 102, 204]],
    )


@pytest.fixture
def planar_foam():
    """Five coplanar cells (z = 0): four corners around a central cell."""
    return FoamStore(
        positions=[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0], [0.5, 0.5, 0.0]],
        adjacency_offset=[1, 2, 3, 4, 8],
        adjacency=[4, 4, 4, 4, 0, 1, 2, 3],
        density=[1.0, 1.0, 1.0, 1.0, 2.0],
        colors=np.full((5, 3), 200, dtype=np.uint8),
    )


@pytest.fixture
def foam_factory():
    """Builder for Delaunay foams from arbitrary sites."""
    return make_delaunay_foam


def uniform_directions(n_samples, seed=None):
    """Unit vectors uniformly distributed on the sphere (normalized Gaussians)."""
    rng = np.random.default_rng(seed)
    directions = rng.normal(size=(n_samples, 3))
    return directions / np.linalg.norm(directions, axis=1, keepdims=True)


@pytest.fixture
def sphere_sampler():
    """Sampler of uniform unit directions, called as ``sampler(n, seed=...)``."""
    return uniform_directions
