"""Boundary textures mapping bounding-box faces to entry cells.

Each of the six box faces carries a square texture whose texels store the
index of the foam cell nearest to that point of the face, encoded as a
24-bit integer in an RGB byte triple. A ray entering the box through a
face looks up its starting cell instead of searching the foam.

Face ordering and UV axes (face-local, unit-box coordinates):
    Face 0: +X, u=+Z, v=+Y
    Face 1: -X, u=-Z, v=+Y
    Face 2: +Y, u=+X, v=+Z
    Face 3: -Y, u=+X, v=-Z
    Face 4: +Z, u=+X, v=+Y
    Face 5: -Z, u=-X, v=+Y
"""

import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Set, Tuple, Union

from numba import njit, prange
from tqdm import tqdm

from .box import FACE_NORMALS, OrientedBox

FACE_AXES = np.array([
    [[0, 0, +1], [0, +1, 0]],   # +X
    [[0, 0, -1], [0, +1, 0]],   # -X
    [[+1, 0, 0], [0, 0, +1]],   # +Y
    [[+1, 0, 0], [0, 0, -1]],   # -Y
    [[+1, 0, 0], [0, +1, 0]],   # +Z
    [[-1, 0, 0], [0, +1, 0]],   # -Z
], dtype=np.float64)

INDEX_LIMIT = 1 << 24


def index_to_color(indices: np.ndarray) -> np.ndarray:
    """Encode cell indices as RGB byte triples.

    Args:
        indices: Cell indices in [0, 2^24), any shape

    Returns:
        Colors, shape (..., 3), uint8
    """
    indices = np.asarray(indices, dtype=np.int64)
    if indices.size and (indices.min() < 0 or indices.max() >= INDEX_LIMIT):
        raise ValueError(f"Cell indices must be in [0, {INDEX_LIMIT}) to fit 24 bits")

    return np.stack([
        (indices >> 16) & 0xFF,
        (indices >> 8) & 0xFF,
        indices & 0xFF,
    ], axis=-1).astype(np.uint8)


def color_to_index(colors: np.ndarray) -> np.ndarray:
    """Decode RGB byte triples produced by :func:`index_to_color`."""
    colors = np.asarray(colors).astype(np.int64)
    return (colors[..., 0] << 16) | (colors[..., 1] << 8) | colors[..., 2]


def face_uv(face: np.ndarray, local_points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Texture coordinates in [0, 1] of unit-box surface points on ``face``."""
    face = np.asarray(face, dtype=np.int64)
    local_points = np.asarray(local_points, dtype=np.float64)
    axes = FACE_AXES[face]
    u = np.einsum('...i,...i->...', local_points, axes[..., 0, :]) + 0.5
    v = np.einsum('...i,...i->...', local_points, axes[..., 1, :]) + 0.5
    return u, v


def face_local_point(face: int, u: float, v: float) -> np.ndarray:
    """Unit-box point on ``face`` at texture coordinates (u, v)."""
    u_axis, v_axis = FACE_AXES[face]
    return FACE_NORMALS[face] * 0.5 + (u - 0.5) * u_axis + (v - 0.5) * v_axis


@njit(cache=True)
def _walk_to_nearest(positions, adjacency_offset, adjacency, start, px, py, pz, max_walk):
    """Greedy walk along adjacency toward the cell nearest to (px, py, pz).

    Exact on a Delaunay/Voronoi foam: a cell that is not the nearest always
    has a neighbor that is closer.
    """
    cell = start
    dx = positions[cell, 0] - px
    dy = positions[cell, 1] - py
    dz = positions[cell, 2] - pz
    best = dx * dx + dy * dy + dz * dz

    for _ in range(max_walk):
        adj_from = 0
        if cell > 0:
            adj_from = adjacency_offset[cell - 1]
        adj_to = adjacency_offset[cell]

        next_cell = cell
        for a in range(adj_from, adj_to):
            j = adjacency[a]
            dx = positions[j, 0] - px
            dy = positions[j, 1] - py
            dz = positions[j, 2] - pz
            dist = dx * dx + dy * dy + dz * dz
            if dist < best:
                best = dist
                next_cell = j

        if next_cell == cell:
            break
        cell = next_cell

    return cell


@njit(parallel=True, cache=True)
def _scan_face(positions, adjacency_offset, adjacency, seed, origin, u_step, v_step, out):
    """Fill ``out[v, u]`` with nearest cells, walking from neighboring texels."""
    resolution = out.shape[0]
    max_walk = positions.shape[0]

    # First column sequentially from the seed texel
    out[0, 0] = seed
    for vi in range(1, resolution):
        px = origin[0] + vi * v_step[0]
        py = origin[1] + vi * v_step[1]
        pz = origin[2] + vi * v_step[2]
        out[vi, 0] = _walk_to_nearest(
            positions, adjacency_offset, adjacency, out[vi - 1, 0], px, py, pz, max_walk
        )

    # Rows are independent once their first texel is known
    for vi in prange(resolution):
        for ui in range(1, resolution):
            px = origin[0] + ui * u_step[0] + vi * v_step[0]
            py = origin[1] + ui * u_step[1] + vi * v_step[1]
            pz = origin[2] + ui * u_step[2] + vi * v_step[2]
            out[vi, ui] = _walk_to_nearest(
                positions, adjacency_offset, adjacency, out[vi, ui - 1], px, py, pz, max_walk
            )


def _face_cell_map(store, box: OrientedBox, face: int, resolution: int) -> np.ndarray:
    """Nearest-cell index for every texel of one face, shape (R, R)."""
    if not 0 <= face < 6:
        raise ValueError(f"face must be in [0, 5], got {face}")
    if resolution < 2:
        raise ValueError(f"resolution must be >= 2, got {resolution}")
    if store.cell_count == 0:
        raise ValueError("Cannot build boundary textures for an empty foam")
    if store.cell_count > INDEX_LIMIT:
        raise ValueError(
            f"Foam has {store.cell_count} cells; boundary textures hold at most {INDEX_LIMIT}"
        )

    corners = box.to_world(np.stack([
        face_local_point(face, 0.0, 0.0),
        face_local_point(face, 1.0, 0.0),
        face_local_point(face, 0.0, 1.0),
    ]))
    origin = corners[0]
    u_step = (corners[1] - origin) / (resolution - 1)
    v_step = (corners[2] - origin) / (resolution - 1)

    # Only the seed texel needs an exhaustive search
    seed = store.find_nearest_cell(origin)

    arrays = store.kernel_arrays()
    out = np.zeros((resolution, resolution), dtype=np.int64)
    _scan_face(
        arrays["positions"], arrays["adjacency_offset"], arrays["adjacency"],
        seed, origin, u_step, v_step, out
    )
    return out


def generate_boundary_texture(
    store,
    box: OrientedBox,
    face: int,
    resolution: int = 256
) -> np.ndarray:
    """Generate the entry-cell texture of one box face.

    Args:
        store: FoamStore to index
        box: Bounding box the textures belong to
        face: Face index (0-5: +X, -X, +Y, -Y, +Z, -Z)
        resolution: Texels per side

    Returns:
        Texture, shape (resolution, resolution, 3), uint8; row index is v
    """
    return index_to_color(_face_cell_map(store, box, face, resolution))


def generate_boundary_textures(
    store,
    box: OrientedBox,
    resolution: int = 256,
    show_progress: bool = False
) -> Tuple["BoundaryTextures", Set[int]]:
    """Generate entry-cell textures for all six faces.

    Returns:
        Tuple of (BoundaryTextures, set of cell indices touching the box surface)
    """
    maps = []
    for face in tqdm(range(6), desc="Boundary faces", disable=not show_progress):
        maps.append(_face_cell_map(store, box, face, resolution))

    stacked = np.stack(maps)
    boundary_cells = set(np.unique(stacked).tolist())
    return BoundaryTextures(index_to_color(stacked)), boundary_cells


def remap_boundary_texture(
    texture: np.ndarray,
    mapping: Union[np.ndarray, Mapping[int, int]]
) -> np.ndarray:
    """Rewrite the cell indices stored in a texture.

    Args:
        texture: Encoded texture, shape (..., 3)
        mapping: Old-to-new index array, or a dict (missing indices map to 0)

    Returns:
        Re-encoded texture with the same shape
    """
    indices = color_to_index(texture)
    if isinstance(mapping, Mapping):
        remapped = np.vectorize(lambda i: mapping.get(int(i), 0), otypes=[np.int64])(indices)
    else:
        remapped = np.asarray(mapping, dtype=np.int64)[indices]
    return index_to_color(remapped)


@dataclass
class BoundaryTextures:
    """Six entry-cell textures, one per bounding-box face.

    Attributes:
        textures: Encoded textures, shape (6, R, R, 3), uint8
    """

    textures: np.ndarray
    _cache: Dict[str, np.ndarray] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate texture layout."""
        self.textures = np.ascontiguousarray(self.textures, dtype=np.uint8)
        if self.textures.ndim != 4 or self.textures.shape[0] != 6 or self.textures.shape[3] != 3:
            raise ValueError(
                f"Expected textures of shape (6, R, R, 3), got {self.textures.shape}"
            )
        if self.textures.shape[1] != self.textures.shape[2] or self.textures.shape[1] < 2:
            raise ValueError(
                f"Textures must be square with resolution >= 2, got {self.textures.shape[1:3]}"
            )

    @property
    def resolution(self) -> int:
        """Texels per side."""
        return int(self.textures.shape[1])

    def index_maps(self) -> np.ndarray:
        """Decoded cell indices, shape (6, R, R), int64."""
        if "maps" not in self._cache:
            self._cache["maps"] = color_to_index(self.textures)
        return self._cache["maps"]

    def lookup(self, faces: np.ndarray, local_points: np.ndarray) -> np.ndarray:
        """Entry cells for unit-box surface points.

        Args:
            faces: Struck face per point, shape (N,)
            local_points: Points on the unit box surface, shape (N, 3)

        Returns:
            Cell indices from the nearest texel, shape (N,)
        """
        faces = np.asarray(faces, dtype=np.int64).reshape(-1)
        local_points = np.asarray(local_points, dtype=np.float64).reshape(-1, 3)
        u, v = face_uv(faces, local_points)

        last = self.resolution - 1
        cols = np.clip(np.rint(u * last), 0, last).astype(np.int64)
        rows = np.clip(np.rint(v * last), 0, last).astype(np.int64)
        return self.index_maps()[faces, rows, cols]

    def remap(self, mapping: Union[np.ndarray, Mapping[int, int]]) -> "BoundaryTextures":
        """Textures with their cell indices rewritten (e.g. after a reorder)."""
        return BoundaryTextures(remap_boundary_texture(self.textures, mapping))

    def save(self, path: Union[str, Path]) -> Path:
        """Save textures as compressed npz data at exactly ``path``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Through a handle so numpy does not append ".npz"
        with open(path, "wb") as f:
            np.savez_compressed(f, textures=self.textures)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "BoundaryTextures":
        """Load textures written by :meth:`save`."""
        with np.load(path) as data:
            return cls(data["textures"])
