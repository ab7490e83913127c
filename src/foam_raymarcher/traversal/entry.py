"""Entry-cell strategies.

Every traversal needs the cell containing the point where marching
begins. Strategies differ only in how that cell is found; the traversal
kernel itself is shared.
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import Optional

from scipy.spatial import cKDTree

from ..bounds.box import OrientedBox
from ..bounds.boundary_textures import BoundaryTextures


class EntryStrategy(ABC):
    """Finds the starting cell of each ray."""

    @abstractmethod
    def start_cells(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_start: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Starting cell per ray.

        Args:
            origins: Ray origins, shape (N, 3)
            directions: Ray directions, shape (N, 3)
            t_start: Distance along each ray where marching begins (default 0)

        Returns:
            Cell indices, shape (N,), int64
        """

    def find_entry_cell(self, origin: np.ndarray, direction: np.ndarray, t_start: float = 0.0) -> int:
        """Starting cell of a single ray."""
        cells = self.start_cells(
            np.asarray(origin, dtype=np.float64).reshape(1, 3),
            np.asarray(direction, dtype=np.float64).reshape(1, 3),
            np.array([t_start], dtype=np.float64),
        )
        return int(cells[0])


class FixedStartCell(EntryStrategy):
    """Start every ray in the same, externally chosen cell."""

    def __init__(self, cell: int):
        if cell < 0:
            raise ValueError(f"cell must be non-negative, got {cell}")
        self.cell = int(cell)

    def start_cells(self, origins, directions, t_start=None):
        n_rays = np.asarray(origins).reshape(-1, 3).shape[0]
        return np.full(n_rays, self.cell, dtype=np.int64)

    def __repr__(self):
        return f"FixedStartCell(cell={self.cell})"


class NearestCellEntry(EntryStrategy):
    """Start in the cell whose site is nearest to the marching start point.

    The nearest site owns the Voronoi cell containing the point, so this is
    exact for any foam built as a Voronoi diagram. Rays sharing a start
    point (all rays of a pinhole camera without a box) share one query.
    """

    def __init__(self, store):
        self.store = store
        self._tree = None

    def _query(self, points: np.ndarray) -> np.ndarray:
        if points.shape[0] == 1:
            return np.array([self.store.find_nearest_cell(points[0])], dtype=np.int64)
        if self._tree is None:
            self._tree = cKDTree(self.store.positions.astype(np.float64))
        _, cells = self._tree.query(points)
        return np.asarray(cells, dtype=np.int64)

    def start_cells(self, origins, directions, t_start=None):
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if self.store.cell_count == 0:
            raise ValueError("Cannot find entry cells in an empty foam")
        if origins.shape[0] == 0:
            return np.zeros(0, dtype=np.int64)

        points = origins
        if t_start is not None:
            points = origins + directions * np.asarray(t_start, dtype=np.float64).reshape(-1, 1)

        unique_points, inverse = np.unique(points, axis=0, return_inverse=True)
        return self._query(unique_points)[inverse.reshape(-1)]

    def __repr__(self):
        return f"NearestCellEntry(cells={self.store.cell_count})"


class BoundaryTextureEntry(EntryStrategy):
    """Start rays entering the box in the cell stored in the boundary texture.

    Rays that start inside the box (or miss it) never cross a face, so they
    are resolved by ``fallback``.
    """

    def __init__(
        self,
        textures: BoundaryTextures,
        box: OrientedBox,
        fallback: Optional[EntryStrategy] = None
    ):
        self.textures = textures
        self.box = box
        self.fallback = fallback or FixedStartCell(0)

    def start_cells(self, origins, directions, t_start=None):
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)

        hits = self.box.intersect(origins, directions)
        entering = hits.hit & ~hits.inside

        cells = np.zeros(origins.shape[0], dtype=np.int64)
        if np.any(entering):
            cells[entering] = self.textures.lookup(hits.face[entering], hits.local_entry[entering])

        rest = ~entering
        if np.any(rest):
            rest_t = None if t_start is None else np.asarray(t_start, dtype=np.float64).reshape(-1)[rest]
            cells[rest] = self.fallback.start_cells(origins[rest], directions[rest], rest_t)
        return cells

    def __repr__(self):
        return f"BoundaryTextureEntry(resolution={self.textures.resolution}, fallback={self.fallback!r})"
