"""Camera models and per-pixel ray generation.

Cameras follow the right-handed convention: camera space looks down -z
with +y up. ``camera_to_world`` maps camera space into the space the foam
positions live in.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class CameraModel(str, Enum):
    """Projection used to turn pixels into rays."""
    PERSPECTIVE = "perspective"
    FISHEYE = "fisheye"


def pixel_ndc(width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Normalized device coordinates of pixel centers.

    Args:
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        Tuple of (x, y) arrays of shape (height, width) in [-1, 1]. Row 0 is
        the top of the image (+y).
    """
    if width < 1 or height < 1:
        raise ValueError(f"Image size must be positive, got {width}x{height}")

    x = (np.arange(width, dtype=np.float64) + 0.5) / width * 2.0 - 1.0
    y = 1.0 - (np.arange(height, dtype=np.float64) + 0.5) / height * 2.0
    return np.meshgrid(x, y)


def _to_world(camera_to_world: np.ndarray, directions: np.ndarray) -> np.ndarray:
    return directions @ np.asarray(camera_to_world, dtype=np.float64)[:3, :3].T


def _normalize(v: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(v, axis=-1, keepdims=True)
    return np.divide(v, norm, out=np.zeros_like(v), where=norm > 0)


def perspective_rays(
    camera_to_world: np.ndarray,
    inverse_projection: np.ndarray,
    width: int,
    height: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Unproject every pixel through a pinhole camera.

    Args:
        camera_to_world: Camera-to-world transform (4, 4)
        inverse_projection: Inverse of the projection matrix (4, 4)
        width: Image width
        height: Image height

    Returns:
        Tuple of (origins, directions), each of shape (height, width, 3).
        Directions are unit length.
    """
    camera_to_world = np.asarray(camera_to_world, dtype=np.float64).reshape(4, 4)
    inverse_projection = np.asarray(inverse_projection, dtype=np.float64).reshape(4, 4)

    x, y = pixel_ndc(width, height)
    ndc = np.stack([x, y, np.zeros_like(x), np.ones_like(x)], axis=-1)

    view = ndc @ inverse_projection.T
    w = view[..., 3:4]
    view = np.divide(view[..., :3], w, out=view[..., :3].copy(), where=w != 0)

    directions = _normalize(_to_world(camera_to_world, view))
    origins = np.broadcast_to(camera_to_world[:3, 3], directions.shape).copy()
    return origins, directions


def fisheye_rays(
    camera_to_world: np.ndarray,
    fov: float,
    width: int,
    height: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Equidistant fisheye rays.

    The polar angle grows linearly with distance from the image center,
    reaching ``fov`` degrees at ``|uv| = 1``. Pixels whose angle reaches
    pi get a zero direction, marking them as having no ray.

    Args:
        camera_to_world: Camera-to-world transform (4, 4)
        fov: Field of view in degrees
        width: Image width
        height: Image height

    Returns:
        Tuple of (origins, directions), each of shape (height, width, 3)
    """
    if fov <= 0:
        raise ValueError(f"fov must be positive, got {fov}")
    camera_to_world = np.asarray(camera_to_world, dtype=np.float64).reshape(4, 4)

    u, v = pixel_ndc(width, height)
    phi = np.hypot(u, v) * fov / 360.0 * 2.0 * np.pi
    theta = np.arctan2(v, u)

    local = np.stack([
        np.sin(phi) * np.cos(theta),
        np.sin(phi) * np.sin(theta),
        -np.cos(phi),
    ], axis=-1)
    local[phi >= np.pi] = 0.0

    directions = _normalize(_to_world(camera_to_world, local))
    origins = np.broadcast_to(camera_to_world[:3, 3], directions.shape).copy()
    return origins, directions


def look_at(eye, target, up=(0.0, 1.0, 0.0)) -> np.ndarray:
    """Camera-to-world transform of a camera at ``eye`` looking at ``target``."""
    eye = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye
    if np.linalg.norm(forward) == 0:
        raise ValueError("look_at target coincides with the eye position")
    forward /= np.linalg.norm(forward)

    right = np.cross(forward, np.asarray(up, dtype=np.float64))
    if np.linalg.norm(right) < 1e-12:
        raise ValueError("look_at up vector is parallel to the view direction")
    right /= np.linalg.norm(right)
    true_up = np.cross(right, forward)

    matrix = np.eye(4)
    matrix[:3, 0] = right
    matrix[:3, 1] = true_up
    matrix[:3, 2] = -forward
    matrix[:3, 3] = eye
    return matrix


def perspective_projection(fov_y: float, aspect: float, near: float = 0.01, far: float = 1000.0) -> np.ndarray:
    """OpenGL-style projection matrix (vertical fov in degrees)."""
    if not 0 < fov_y < 180:
        raise ValueError(f"fov_y must be in (0, 180), got {fov_y}")
    if aspect <= 0:
        raise ValueError(f"aspect must be positive, got {aspect}")
    if not 0 < near < far:
        raise ValueError(f"Need 0 < near < far, got near={near}, far={far}")

    f = 1.0 / np.tan(np.radians(fov_y) / 2.0)
    matrix = np.zeros((4, 4))
    matrix[0, 0] = f / aspect
    matrix[1, 1] = f
    matrix[2, 2] = (far + near) / (near - far)
    matrix[2, 3] = 2.0 * far * near / (near - far)
    matrix[3, 2] = -1.0
    return matrix


@dataclass
class Camera:
    """Camera producing one ray per pixel.

    Attributes:
        camera_to_world: Camera-to-world transform (4, 4)
        width: Image width in pixels
        height: Image height in pixels
        model: Projection model
        fov: Field of view in degrees (vertical for perspective, polar angle
            at the image edge for fisheye)
        inverse_projection: Inverse projection matrix; derived from ``fov``
            when omitted
    """

    camera_to_world: np.ndarray
    width: int
    height: int
    model: CameraModel = CameraModel.PERSPECTIVE
    fov: float = 60.0
    inverse_projection: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate parameters."""
        self.camera_to_world = np.asarray(self.camera_to_world, dtype=np.float64).reshape(4, 4)
        self.model = CameraModel(self.model)

        if self.width < 1 or self.height < 1:
            raise ValueError(f"Image size must be positive, got {self.width}x{self.height}")
        if self.fov <= 0:
            raise ValueError(f"fov must be positive, got {self.fov}")

        if self.model == CameraModel.PERSPECTIVE and self.inverse_projection is None:
            projection = perspective_projection(self.fov, self.width / self.height)
            self.inverse_projection = np.linalg.inv(projection)
        elif self.inverse_projection is not None:
            self.inverse_projection = np.asarray(self.inverse_projection, dtype=np.float64).reshape(4, 4)

    @classmethod
    def looking_at(cls, eye, target, width: int, height: int, up=(0.0, 1.0, 0.0), **kwargs) -> "Camera":
        """Camera at ``eye`` aimed at ``target``."""
        return cls(look_at(eye, target, up), width, height, **kwargs)

    @property
    def position(self) -> np.ndarray:
        """Camera position in world space."""
        return self.camera_to_world[:3, 3].copy()

    def generate_rays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Rays for every pixel, each array of shape (height, width, 3)."""
        if self.model == CameraModel.FISHEYE:
            return fisheye_rays(self.camera_to_world, self.fov, self.width, self.height)
        return perspective_rays(self.camera_to_world, self.inverse_projection, self.width, self.height)

    def to_dict(self) -> dict:
        """JSON-serializable description."""
        return {
            "model": self.model.value,
            "width": self.width,
            "height": self.height,
            "fov": self.fov,
            "camera_to_world": self.camera_to_world.tolist(),
        }
