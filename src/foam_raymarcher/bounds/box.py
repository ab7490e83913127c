"""Oriented bounding box clipping.

The box is stored as a local-to-world affine transform of the unit cube
``[-0.5, 0.5]^3``. Rays are clipped in local space with a slab test and the
entry/exit points are mapped back to world space, so the returned distances
stay correct for non-uniformly scaled boxes.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from scipy.spatial.transform import Rotation

# Face order shared with the boundary textures: +X, -X, +Y, -Y, +Z, -Z
FACE_NORMALS = np.array([
    [+1, 0, 0],   # +X
    [-1, 0, 0],   # -X
    [0, +1, 0],   # +Y
    [0, -1, 0],   # -Y
    [0, 0, +1],   # +Z
    [0, 0, -1],   # -Z
], dtype=np.float64)


class BoxHits(NamedTuple):
    """Result of clipping a batch of rays against a box.

    Attributes:
        hit: Whether each ray overlaps the box in front of its origin, shape (N,)
        t_enter: World-space distance to the entry point (0 if the origin is inside)
        t_exit: World-space distance to the exit point
        local_entry: Entry point in unit-box coordinates, shape (N, 3)
        face: Struck face index (0-5: +X, -X, +Y, -Y, +Z, -Z), -1 on a miss
        inside: Whether the ray origin lies inside the box
    """
    hit: np.ndarray
    t_enter: np.ndarray
    t_exit: np.ndarray
    local_entry: np.ndarray
    face: np.ndarray
    inside: np.ndarray


def struck_face(local_points: np.ndarray) -> np.ndarray:
    """Face index for points on the unit box surface.

    The axis with the largest absolute coordinate wins; its sign picks the
    positive or negative face.
    """
    local_points = np.asarray(local_points, dtype=np.float64).reshape(-1, 3)
    axis = np.argmax(np.abs(local_points), axis=1)
    component = local_points[np.arange(local_points.shape[0]), axis]
    return (2 * axis + (component < 0)).astype(np.int64)


@dataclass
class OrientedBox:
    """Oriented bounding box.

    Attributes:
        center: World-space center (3,)
        size: Edge lengths along the local axes (3,)
        rotation: Orientation quaternion (x, y, z, w)

    Example:
        >>> box = OrientedBox(center=[0, 0, 0], size=[2, 4, 6])
        >>> hits = box.intersect([[-5, 0, 0]], [[1, 0, 0]])
        >>> float(hits.t_enter[0]), float(hits.t_exit[0])
        (4.0, 6.0)
    """

    center: np.ndarray
    size: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    transform: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate parameters and build the local-to-world transform."""
        self.center = np.asarray(self.center, dtype=np.float64).reshape(3)
        self.size = np.asarray(self.size, dtype=np.float64).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(4)

        if self.transform is None:
            if np.any(self.size <= 0):
                raise ValueError(f"Box size must be positive, got {self.size.tolist()}")
            matrix = np.eye(4)
            matrix[:3, :3] = Rotation.from_quat(self.rotation).as_matrix() * self.size
            matrix[:3, 3] = self.center
            self.transform = matrix
        else:
            self.transform = np.asarray(self.transform, dtype=np.float64).reshape(4, 4)
            if abs(np.linalg.det(self.transform[:3, :3])) < 1e-12:
                raise ValueError("Box transform is singular")

        self._inverse = np.linalg.inv(self.transform)

    @classmethod
    def from_matrix(cls, local_to_world: np.ndarray) -> "OrientedBox":
        """Create a box from an arbitrary affine transform of the unit cube."""
        matrix = np.asarray(local_to_world, dtype=np.float64).reshape(4, 4)
        axes = matrix[:3, :3]
        size = np.linalg.norm(axes, axis=0)
        if np.any(size == 0):
            raise ValueError("Box transform is singular")
        rotation = Rotation.from_matrix(axes / size).as_quat()
        return cls(center=matrix[:3, 3], size=size, rotation=rotation, transform=matrix)

    @property
    def local_to_world(self) -> np.ndarray:
        """Unit-box to world transform (4, 4)."""
        return self.transform.copy()

    @property
    def world_to_local(self) -> np.ndarray:
        """World to unit-box transform (4, 4)."""
        return self._inverse.copy()

    def to_local(self, points: np.ndarray) -> np.ndarray:
        """Map world points into unit-box coordinates."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self._inverse[:3, :3].T + self._inverse[:3, 3]

    def to_world(self, points: np.ndarray) -> np.ndarray:
        """Map unit-box points into world coordinates."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.transform[:3, :3].T + self.transform[:3, 3]

    def contains(self, points: np.ndarray) -> np.ndarray:
        """Whether world points lie inside the box."""
        return np.all(np.abs(self.to_local(points)) <= 0.5, axis=-1)

    def intersect(self, origins: np.ndarray, directions: np.ndarray) -> BoxHits:
        """Clip rays against the box.

        Args:
            origins: Ray origins, shape (N, 3)
            directions: Ray directions, shape (N, 3)

        Returns:
            BoxHits with per-ray entry/exit distances and struck faces
        """
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        n_rays = origins.shape[0]

        local_origin = self.to_local(origins)
        local_dir = directions @ self._inverse[:3, :3].T
        valid = np.any(local_dir != 0, axis=1)

        with np.errstate(divide="ignore", invalid="ignore"):
            inv_dir = 1.0 / local_dir
            t0 = (-0.5 - local_origin) * inv_dir
            t1 = (0.5 - local_origin) * inv_dir

        t_near = np.max(np.fmin(t0, t1), axis=1)
        t_far = np.min(np.fmax(t0, t1), axis=1)

        hit = valid & (t_near <= t_far) & (t_far >= 0)
        inside = hit & (t_near < 0)

        t_near = np.where(hit, np.maximum(t_near, 0.0), 0.0)
        t_far = np.where(hit, t_far, 0.0)

        local_entry = local_origin + local_dir * t_near[:, None]
        local_exit = local_origin + local_dir * t_far[:, None]

        # Distances are recomputed in world space; local t is not scale invariant
        world_entry = self.to_world(local_entry)
        world_exit = self.to_world(local_exit)
        dir_sq = np.einsum('ij,ij->i', directions, directions)
        dir_sq = np.where(dir_sq > 0, dir_sq, 1.0)
        t_enter = np.einsum('ij,ij->i', world_entry - origins, directions) / dir_sq
        t_exit = np.einsum('ij,ij->i', world_exit - origins, directions) / dir_sq

        face = np.where(hit, struck_face(local_entry), -1)

        return BoxHits(
            hit=hit,
            t_enter=np.where(hit, t_enter, 0.0),
            t_exit=np.where(hit, t_exit, 0.0),
            local_entry=local_entry,
            face=face.reshape(n_rays),
            inside=inside,
        )

    def to_dict(self) -> dict:
        """JSON-serializable description."""
        return {
            "center": self.center.tolist(),
            "size": self.size.tolist(),
            "rotation": self.rotation.tolist(),
        }
