"""Configuration management for foam rendering."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Tuple


class GammaMode(str, Enum):
    """Where shaded colors are linearized with ``pow(rgb, gamma)``."""
    NONE = "none"
    PER_STEP = "per_step"
    FINAL = "final"

    @property
    def kernel_code(self) -> int:
        """Integer code passed to the traversal kernels."""
        return {GammaMode.NONE: 0, GammaMode.PER_STEP: 1, GammaMode.FINAL: 2}[self]


@dataclass
class RenderConfig:
    """Configuration for foam ray marching.

    Attributes:
        sh_degree: SH degree used for shading (None = degree stored in the foam)
        max_steps: Maximum number of cells visited per ray
        transmittance_threshold: Rays stop once transmittance drops below this
        scene_depth: Far bound of a ray when no bounding box is configured
        gamma_mode: Gamma convention (none, per traversal step, or on the final sum)
        gamma: Exponent used by the gamma modes
        background_color: RGBA used when no background image is supplied
        transparent_hull: If True, zero the density of convex-hull cells
        chunk_rows: Image rows rendered per kernel launch
        show_progress: Show a progress bar over row chunks
    """

    sh_degree: Optional[int] = None
    max_steps: int = 512
    transmittance_threshold: float = 0.01
    scene_depth: float = 10000.0
    gamma_mode: GammaMode = GammaMode.PER_STEP
    gamma: float = 2.2
    background_color: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
    transparent_hull: bool = False
    chunk_rows: int = 64
    show_progress: bool = False

    def __post_init__(self):
        """Validate configuration."""
        if self.sh_degree is not None and not 0 <= self.sh_degree <= 3:
            raise ValueError(f"sh_degree must be in [0, 3], got {self.sh_degree}")

        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")

        if not 0.0 <= self.transmittance_threshold < 1.0:
            raise ValueError(
                f"transmittance_threshold must be in [0, 1), got {self.transmittance_threshold}"
            )

        if self.scene_depth <= 0:
            raise ValueError(f"scene_depth must be positive, got {self.scene_depth}")

        if self.gamma <= 0:
            raise ValueError(f"gamma must be positive, got {self.gamma}")

        if self.chunk_rows < 1:
            raise ValueError(f"chunk_rows must be >= 1, got {self.chunk_rows}")

        self.gamma_mode = GammaMode(self.gamma_mode)

        background = tuple(float(c) for c in self.background_color)
        if len(background) == 3:
            background = background + (1.0,)
        if len(background) != 4:
            raise ValueError(
                f"background_color must have 3 or 4 components, got {len(background)}"
            )
        self.background_color = background

    def resolve_sh_degree(self, stored_degree: int) -> int:
        """Get the SH degree to shade with for a foam storing ``stored_degree``."""
        if self.sh_degree is None:
            return stored_degree
        if self.sh_degree > stored_degree:
            raise ValueError(
                f"Requested sh_degree {self.sh_degree} but the foam only "
                f"stores degree {stored_degree}"
            )
        return self.sh_degree

    def to_dict(self) -> dict:
        """Get a JSON-serializable view of the configuration."""
        data = asdict(self)
        data["gamma_mode"] = self.gamma_mode.value
        data["background_color"] = list(self.background_color)
        return data
