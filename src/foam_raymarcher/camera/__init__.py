"""Camera models and ray generation."""

from .rays import (
    Camera,
    CameraModel,
    pixel_ndc,
    perspective_rays,
    fisheye_rays,
    look_at,
    perspective_projection,
)

__all__ = [
    "Camera",
    "CameraModel",
    "pixel_ndc",
    "perspective_rays",
    "fisheye_rays",
    "look_at",
    "perspective_projection",
]
