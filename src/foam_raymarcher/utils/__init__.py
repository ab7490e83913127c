"""Utilities module."""

from .config import RenderConfig, GammaMode
from .metadata import MetadataWriter

__all__ = ["RenderConfig", "GammaMode", "MetadataWriter"]
