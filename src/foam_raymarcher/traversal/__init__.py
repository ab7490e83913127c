"""Cell traversal: kernels, entry strategies and the image renderer."""

from .marcher import TraceResult, trace_ray
from .entry import (
    EntryStrategy,
    FixedStartCell,
    NearestCellEntry,
    BoundaryTextureEntry,
)
from .renderer import FoamRenderer, RenderResult

__all__ = [
    "TraceResult",
    "trace_ray",
    "EntryStrategy",
    "FixedStartCell",
    "NearestCellEntry",
    "BoundaryTextureEntry",
    "FoamRenderer",
    "RenderResult",
]
