"""Radiance foam ray marching on the CPU."""

from .foam.store import FoamStore
from .foam.ply_io import load_foam_ply, save_foam_ply
from .bounds.box import OrientedBox
from .bounds.boundary_textures import BoundaryTextures, generate_boundary_textures
from .camera.rays import Camera, CameraModel
from .traversal.renderer import FoamRenderer, RenderResult
from .utils.config import RenderConfig, GammaMode

__version__ = "0.1.0"
__all__ = [
    "FoamStore",
    "load_foam_ply",
    "save_foam_ply",
    "OrientedBox",
    "BoundaryTextures",
    "generate_boundary_textures",
    "Camera",
    "CameraModel",
    "FoamRenderer",
    "RenderResult",
    "RenderConfig",
    "GammaMode",
]
