"""Read-only foam scene storage.

A foam is a dense array of cells. Cell ``i`` owns the contiguous adjacency
range ``[adjacency_offset[i-1], adjacency_offset[i])`` (cell 0 starts at 0);
each entry names the neighbor across one face. The face plane is the
perpendicular bisector of the two cell positions, so a per-face difference
vector ``positions[neighbor] - positions[cell]`` is all the traversal needs.
"""

import numpy as np
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Optional, Tuple

from numba import njit, prange
from scipy.spatial import ConvexHull, QhullError

from .attributes import pack_attributes, unpack_attributes
from ..shading.spherical_harmonics import decode_base_color, get_sh_order


@njit(parallel=True, cache=True)
def _build_adjacency_diff(positions, adjacency_offset, adjacency, out):
    """Fill ``out[face]`` with neighbor - owner position, parallel per cell."""
    for i in prange(positions.shape[0]):
        adj_from = 0
        if i > 0:
            adj_from = adjacency_offset[i - 1]
        adj_to = adjacency_offset[i]
        for a in range(adj_from, adj_to):
            j = adjacency[a]
            out[a, 0] = positions[j, 0] - positions[i, 0]
            out[a, 1] = positions[j, 1] - positions[i, 1]
            out[a, 2] = positions[j, 2] - positions[i, 2]


def build_adjacency_diff(
    positions: np.ndarray,
    adjacency_offset: np.ndarray,
    adjacency: np.ndarray
) -> np.ndarray:
    """Precompute the per-face direction difference vectors.

    One pass over all adjacency entries; must be rerun whenever positions
    or adjacency change.

    Args:
        positions: Cell positions, shape (N, 3)
        adjacency_offset: Exclusive end offset of each cell's range, shape (N,)
        adjacency: Neighbor cell index per face, shape (M,)

    Returns:
        Difference vectors, shape (M, 3), float32

    Raises:
        ValueError: If offsets or neighbor indices point outside the buffers
    """
    positions = np.ascontiguousarray(positions, dtype=np.float64)
    adjacency_offset = np.ascontiguousarray(adjacency_offset, dtype=np.int64)
    adjacency = np.ascontiguousarray(adjacency, dtype=np.int64)

    # The kernel does not bounds-check
    if adjacency_offset.size and (
        np.any(np.diff(adjacency_offset) < 0) or adjacency_offset[-1] > adjacency.shape[0]
    ):
        raise ValueError("adjacency_offset must be non-decreasing and within the adjacency buffer")
    if adjacency.size and (adjacency.min() < 0 or adjacency.max() >= positions.shape[0]):
        raise ValueError(
            f"Neighbor indices must be in [0, {positions.shape[0]}), "
            f"got range [{adjacency.min()}, {adjacency.max()}]"
        )

    out = np.zeros((adjacency.shape[0], 3), dtype=np.float64)
    if positions.shape[0] > 0:
        _build_adjacency_diff(positions, adjacency_offset, adjacency, out)
    return out.astype(np.float32)


@dataclass
class FoamStore:
    """Immutable per-frame foam data.

    Attributes:
        positions: Cell positions, shape (N, 3)
        adjacency_offset: Exclusive end offset of each cell's adjacency range, shape (N,)
        adjacency: Neighbor index per face, shape (M,)
        density: Per-cell density, shape (N,)
        colors: Base colors as bytes, shape (N, 3)
        sh_rest: Higher SH coefficients, shape (N, (L+1)^2 - 1, 3)
        adjacency_diff: Derived face difference vectors, shape (M, 3).
            Built from positions and adjacency when not supplied.

    Example:
        >>> store = FoamStore(
        ...     positions=[[-1, 0, 0], [1, 0, 0]],
        ...     adjacency_offset=[1, 2],
        ...     adjacency=[1, 0],
        ...     density=[1.0, 0.0],
        ...     colors=[[255, 0, 0], [0, 0, 255]],
        ... )
        >>> store.adjacency_range(1)
        (1, 2)
        >>> store.face_diff(0)
        array([2., 0., 0.], dtype=float32)
    """

    positions: np.ndarray
    adjacency_offset: np.ndarray
    adjacency: np.ndarray
    density: np.ndarray
    colors: np.ndarray
    sh_rest: Optional[np.ndarray] = None
    adjacency_diff: Optional[np.ndarray] = None
    _cache: Dict[str, object] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        """Normalize array types and derive the face difference buffer."""
        self.positions = np.ascontiguousarray(self.positions, dtype=np.float32).reshape(-1, 3)
        n_cells = self.positions.shape[0]

        self.adjacency_offset = np.ascontiguousarray(self.adjacency_offset, dtype=np.uint32).reshape(-1)
        self.adjacency = np.ascontiguousarray(self.adjacency, dtype=np.uint32).reshape(-1)
        self.density = np.ascontiguousarray(self.density, dtype=np.float32).reshape(-1)
        self.colors = np.ascontiguousarray(self.colors, dtype=np.uint8).reshape(-1, 3)

        if self.sh_rest is None:
            self.sh_rest = np.zeros((n_cells, 0, 3), dtype=np.float32)
        self.sh_rest = np.ascontiguousarray(self.sh_rest, dtype=np.float32)
        if self.sh_rest.ndim == 2:
            self.sh_rest = self.sh_rest.reshape(n_cells, -1, 3)

        for name, array in (
            ("adjacency_offset", self.adjacency_offset),
            ("density", self.density),
            ("colors", self.colors),
            ("sh_rest", self.sh_rest),
        ):
            if array.shape[0] != n_cells:
                raise ValueError(
                    f"{name} has {array.shape[0]} entries but there are {n_cells} cells"
                )

        # Raises for coefficient counts that are not (L+1)^2 - 1
        self._sh_degree = get_sh_order(self.sh_rest.shape[1] + 1)

        if self.adjacency_diff is None:
            self.adjacency_diff = build_adjacency_diff(
                self.positions, self.adjacency_offset, self.adjacency
            )
        else:
            self.adjacency_diff = np.ascontiguousarray(self.adjacency_diff, dtype=np.float32).reshape(-1, 3)
            if self.adjacency_diff.shape[0] != self.adjacency.shape[0]:
                raise ValueError(
                    f"adjacency_diff has {self.adjacency_diff.shape[0]} entries but "
                    f"adjacency has {self.adjacency.shape[0]}"
                )

    @property
    def cell_count(self) -> int:
        """Number of cells."""
        return int(self.positions.shape[0])

    @property
    def face_count(self) -> int:
        """Total number of adjacency entries."""
        return int(self.adjacency.shape[0])

    @property
    def sh_degree(self) -> int:
        """SH degree of the stored harmonics."""
        return self._sh_degree

    def position(self, i: int) -> np.ndarray:
        """Position of cell ``i``."""
        return self.positions[i]

    def adjacency_range(self, i: int) -> Tuple[int, int]:
        """Half-open range of face indices owned by cell ``i``."""
        adj_from = int(self.adjacency_offset[i - 1]) if i > 0 else 0
        return adj_from, int(self.adjacency_offset[i])

    def neighbor(self, face: int) -> int:
        """Cell on the far side of ``face``."""
        return int(self.adjacency[face])

    def face_diff(self, face: int) -> np.ndarray:
        """Difference vector (neighbor - owner) of ``face``."""
        return self.adjacency_diff[face]

    def attributes(self, i: int) -> Tuple[float, np.ndarray]:
        """Density and harmonics of cell ``i``.

        Returns:
            Tuple of density and harmonics of shape ((L+1)^2, 3), whose
            row 0 is the decoded base color.
        """
        return float(self.density[i]), self.harmonics[i]

    @property
    def harmonics(self) -> np.ndarray:
        """All cell harmonics, shape (N, (L+1)^2, 3), base color decoded in row 0."""
        if "harmonics" not in self._cache:
            base = decode_base_color(self.colors)[:, None, :]
            self._cache["harmonics"] = np.ascontiguousarray(
                np.concatenate([base, self.sh_rest], axis=1), dtype=np.float32
            )
        return self._cache["harmonics"]

    def kernel_arrays(self) -> Dict[str, np.ndarray]:
        """Contiguous float64/int64 copies of the buffers read by the kernels."""
        if "kernel" not in self._cache:
            self._cache["kernel"] = {
                "positions": np.ascontiguousarray(self.positions, dtype=np.float64),
                "adjacency_offset": np.ascontiguousarray(self.adjacency_offset, dtype=np.int64),
                "adjacency": np.ascontiguousarray(self.adjacency, dtype=np.int64),
                "adjacency_diff": np.ascontiguousarray(self.adjacency_diff, dtype=np.float64),
                "density": np.ascontiguousarray(self.density, dtype=np.float64),
                "harmonics": np.ascontiguousarray(self.harmonics, dtype=np.float64),
            }
        return self._cache["kernel"]

    def rebuild_adjacency_diff(self):
        """Recompute the derived face difference buffer after an edit."""
        self.adjacency_diff = build_adjacency_diff(
            self.positions, self.adjacency_offset, self.adjacency
        )
        self._cache.clear()

    def packed_positions(self) -> np.ndarray:
        """Positions as vec4 with the adjacency end offset bit-cast into w."""
        points = np.empty((self.cell_count, 4), dtype=np.float32)
        points[:, :3] = self.positions
        points[:, 3] = self.adjacency_offset.view(np.float32)
        return points

    def packed_attributes(self) -> np.ndarray:
        """Per-cell attributes in the packed half-precision layout."""
        return pack_attributes(self.density, self.colors, self.sh_rest)

    @classmethod
    def from_packed(
        cls,
        points: np.ndarray,
        adjacency: np.ndarray,
        attributes: np.ndarray,
        sh_degree: int
    ) -> "FoamStore":
        """Build a store from packed vec4 positions and packed attributes.

        Args:
            points: Positions with bit-cast adjacency end offsets, shape (N, 4)
            adjacency: Neighbor index per face, shape (M,)
            attributes: Packed attribute words, shape (N, words)
            sh_degree: SH degree the attributes were packed with
        """
        points = np.asarray(points, dtype=np.float32).reshape(-1, 4)
        offsets = np.ascontiguousarray(points[:, 3]).view(np.uint32)
        density, colors, sh_rest = unpack_attributes(attributes, sh_degree)
        return cls(
            positions=points[:, :3],
            adjacency_offset=offsets,
            adjacency=adjacency,
            density=density,
            colors=colors,
            sh_rest=sh_rest,
        )

    def validate(self):
        """Check the foam invariants the traversal relies on.

        Raises:
            ValueError: If adjacency ranges, neighbor indices, face vectors or
                densities are malformed
        """
        offsets = self.adjacency_offset.astype(np.int64)
        if self.cell_count == 0:
            if self.face_count != 0:
                raise ValueError("Foam without cells cannot have adjacency entries")
            return

        if np.any(np.diff(offsets) < 0):
            raise ValueError("adjacency_offset must be monotonically non-decreasing")

        if offsets[-1] != self.face_count:
            raise ValueError(
                f"Last adjacency offset ({offsets[-1]}) must equal the number of "
                f"adjacency entries ({self.face_count})"
            )

        if self.face_count > 0 and int(self.adjacency.max()) >= self.cell_count:
            raise ValueError(
                f"Neighbor index {int(self.adjacency.max())} out of range for "
                f"{self.cell_count} cells"
            )

        if self.face_count > 0:
            lengths = np.einsum('ij,ij->i', self.adjacency_diff, self.adjacency_diff)
            if np.any(lengths == 0):
                bad = int(np.argmax(lengths == 0))
                raise ValueError(f"Face {bad} has a zero difference vector (coincident cells)")

        if np.any(self.density < 0) or not np.all(np.isfinite(self.density)):
            raise ValueError("Densities must be finite and non-negative")

    def hull_cells(self) -> np.ndarray:
        """Indices of cells whose site lies on the convex hull.

        These are exactly the unbounded Voronoi cells. Foams with fewer than
        four cells, or whose sites are coplanar or collinear, have no bounded
        cells and report every cell.
        """
        if self.cell_count < 4:
            return np.arange(self.cell_count, dtype=np.int64)
        try:
            hull = ConvexHull(self.positions.astype(np.float64))
        except QhullError:
            return np.arange(self.cell_count, dtype=np.int64)
        return np.sort(hull.vertices.astype(np.int64))

    def with_transparent_cells(self, cells: Iterable[int]) -> "FoamStore":
        """Copy of the store with the density of ``cells`` forced to zero."""
        density = self.density.copy()
        density[np.asarray(list(cells), dtype=np.int64)] = 0.0
        return replace(self, density=density)

    def find_nearest_cell(self, point: np.ndarray) -> int:
        """Index of the cell whose position is closest to ``point`` (linear scan)."""
        point = np.asarray(point, dtype=np.float64).reshape(3)
        diff = self.positions.astype(np.float64) - point
        return int(np.argmin(np.einsum('ij,ij->i', diff, diff)))
