"""Image rendering on top of the traversal kernels."""

import time
import warnings
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tqdm import tqdm

from .entry import BoundaryTextureEntry, EntryStrategy, NearestCellEntry
from .marcher import _render_rays
from ..bounds.box import OrientedBox
from ..bounds.boundary_textures import BoundaryTextures
from ..camera.rays import Camera
from ..utils.config import RenderConfig


@dataclass
class RenderResult:
    """Rendered pixels plus per-pixel diagnostics.

    Attributes:
        image: Composited RGBA, shape (..., 4)
        transmittance: Remaining transmittance per pixel, shape (...)
        steps: Cells visited per pixel (debug view), shape (...)
        active: Whether a ray was marched for the pixel, shape (...)
        elapsed: Wall-clock render time in seconds
    """

    image: np.ndarray
    transmittance: np.ndarray
    steps: np.ndarray
    active: np.ndarray
    elapsed: float

    def steps_image(self) -> np.ndarray:
        """Step counts normalized to [0, 1] for display."""
        peak = self.steps.max() if self.steps.size else 0
        if peak == 0:
            return np.zeros(self.steps.shape, dtype=np.float32)
        return (self.steps / peak).astype(np.float32)

    def stats(self) -> Dict[str, Any]:
        """Summary statistics of the render."""
        n_rays = int(self.active.size)
        n_active = int(self.active.sum())
        marched_steps = self.steps[self.active]
        return {
            "pixels": n_rays,
            "active_rays": n_active,
            "mean_steps": float(marched_steps.mean()) if n_active else 0.0,
            "max_steps": int(marched_steps.max()) if n_active else 0,
            "mean_transmittance": float(self.transmittance.mean()) if n_rays else 1.0,
            "elapsed_seconds": self.elapsed,
            "rays_per_second": n_active / self.elapsed if self.elapsed > 0 else 0.0,
        }


class FoamRenderer:
    """Renders a foam by marching one ray per pixel.

    Example:
        >>> store, box = load_foam_ply("scene.ply")
        >>> renderer = FoamRenderer(store, RenderConfig(sh_degree=1))
        >>> camera = Camera.looking_at([0, 0, 3], [0, 0, 0], 320, 240)
        >>> result = renderer.render(camera, box=box)
        >>> result.image.shape
        (240, 320, 4)
    """

    def __init__(self, store, config: Optional[RenderConfig] = None):
        """Initialize renderer.

        Args:
            store: FoamStore to render (read-only during rendering)
            config: Render configuration
        """
        self.config = config or RenderConfig()
        self.sh_degree = self.config.resolve_sh_degree(store.sh_degree)

        if self.config.transparent_hull and store.cell_count > 0:
            store = store.with_transparent_cells(store.hull_cells())
        self.store = store

    def _background(self, background, shape) -> np.ndarray:
        """Background RGBA per ray, shape (N, 4)."""
        n_rays = int(np.prod(shape))
        if background is None:
            color = np.asarray(self.config.background_color, dtype=np.float64)
            return np.tile(color, (n_rays, 1))

        background = np.asarray(background, dtype=np.float64)
        if background.shape[-1] == 3:
            background = np.concatenate(
                [background, np.ones(background.shape[:-1] + (1,))], axis=-1
            )
        if background.shape[-1] != 4 or background.size != n_rays * 4:
            raise ValueError(
                f"background must have shape {tuple(shape)} + (3,) or (4,), got {background.shape}"
            )
        return np.ascontiguousarray(background.reshape(n_rays, 4))

    def _entry_strategy(self, box, boundary_textures, entry) -> EntryStrategy:
        if entry is not None:
            return entry
        fallback = NearestCellEntry(self.store)
        if boundary_textures is not None:
            if box is None:
                warnings.warn(
                    "Boundary textures supplied without a bounding box; "
                    "using nearest-cell entry instead",
                    UserWarning
                )
                return fallback
            return BoundaryTextureEntry(boundary_textures, box, fallback)
        return fallback

    def render_rays(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        background: Optional[np.ndarray] = None,
        box: Optional[OrientedBox] = None,
        boundary_textures: Optional[BoundaryTextures] = None,
        depth: Optional[np.ndarray] = None,
        entry: Optional[EntryStrategy] = None,
        chunk_size: Optional[int] = None
    ) -> RenderResult:
        """Render arbitrary rays.

        Args:
            origins: Ray origins, shape (..., 3)
            directions: Ray directions, shape (..., 3). Zero vectors mark
                pixels without a ray; they receive the background unchanged.
            background: RGB or RGBA per ray (defaults to config.background_color)
            box: Optional bounding box; rays missing it pass the background through
            boundary_textures: Entry textures of ``box``
            depth: Optional per-ray far limit (distance along the ray)
            entry: Entry strategy overriding the default
            chunk_size: Rays per kernel launch (default: all at once)

        Returns:
            RenderResult with arrays shaped like the ray batch
        """
        origins = np.asarray(origins, dtype=np.float64)
        directions = np.asarray(directions, dtype=np.float64)
        if origins.shape != directions.shape or origins.shape[-1] != 3:
            raise ValueError(
                f"origins and directions must share a (..., 3) shape, "
                f"got {origins.shape} and {directions.shape}"
            )
        shape = origins.shape[:-1]
        origins = np.ascontiguousarray(origins.reshape(-1, 3))
        directions = directions.reshape(-1, 3)
        n_rays = origins.shape[0]

        norms = np.linalg.norm(directions, axis=1)
        active = norms > 0
        directions = np.ascontiguousarray(
            np.divide(directions, norms[:, None], out=np.zeros_like(directions), where=active[:, None])
        )

        bg = self._background(background, shape)

        t_start = np.zeros(n_rays, dtype=np.float64)
        t_end = np.full(n_rays, self.config.scene_depth, dtype=np.float64)
        if box is not None:
            hits = box.intersect(origins, directions)
            active &= hits.hit
            t_start = np.where(hits.hit, hits.t_enter, 0.0)
            t_end = np.where(hits.hit, hits.t_exit, t_end)

        if depth is not None:
            depth = np.asarray(depth, dtype=np.float64).reshape(-1)
            if depth.shape[0] != n_rays:
                raise ValueError(f"depth has {depth.shape[0]} entries for {n_rays} rays")
            t_end = np.minimum(t_end, depth)

        if self.store.cell_count == 0:
            warnings.warn("Rendering an empty foam; every pixel shows the background", UserWarning)
            active[:] = False

        start_cells = np.zeros(n_rays, dtype=np.int64)
        if np.any(active):
            strategy = self._entry_strategy(box, boundary_textures, entry)
            start_cells[active] = strategy.start_cells(
                origins[active], directions[active], t_start[active]
            )
            if start_cells.max() >= self.store.cell_count:
                raise ValueError(
                    f"Entry strategy returned cell {int(start_cells.max())} "
                    f"but the foam has {self.store.cell_count} cells"
                )

        image = np.zeros((n_rays, 4), dtype=np.float64)
        transmittance = np.ones(n_rays, dtype=np.float64)
        steps = np.zeros(n_rays, dtype=np.int64)

        arrays = self.store.kernel_arrays()
        gamma_mode = self.config.gamma_mode.kernel_code
        chunk_size = chunk_size or max(n_rays, 1)
        chunks = range(0, n_rays, chunk_size)

        start_time = time.time()
        for lo in tqdm(chunks, desc="Rendering", disable=not self.config.show_progress):
            hi = min(lo + chunk_size, n_rays)
            _render_rays(
                origins[lo:hi], directions[lo:hi], active[lo:hi], start_cells[lo:hi],
                t_start[lo:hi], t_end[lo:hi],
                arrays["positions"], arrays["adjacency_offset"], arrays["adjacency"],
                arrays["adjacency_diff"], arrays["density"], arrays["harmonics"], self.sh_degree,
                self.config.transmittance_threshold, self.config.max_steps,
                gamma_mode, self.config.gamma,
                bg[lo:hi], image[lo:hi], transmittance[lo:hi], steps[lo:hi]
            )
        elapsed = time.time() - start_time

        return RenderResult(
            image=image.reshape(shape + (4,)).astype(np.float32),
            transmittance=transmittance.reshape(shape).astype(np.float32),
            steps=steps.reshape(shape),
            active=active.reshape(shape),
            elapsed=elapsed,
        )

    def render(
        self,
        camera: Camera,
        background: Optional[np.ndarray] = None,
        box: Optional[OrientedBox] = None,
        boundary_textures: Optional[BoundaryTextures] = None,
        depth: Optional[np.ndarray] = None,
        entry: Optional[EntryStrategy] = None
    ) -> RenderResult:
        """Render a full camera image.

        Args:
            camera: Camera generating one ray per pixel
            background: Background image, shape (H, W, 3) or (H, W, 4)
            box: Optional bounding box
            boundary_textures: Entry textures of ``box``
            depth: Optional depth buffer (distance along each pixel's ray), shape (H, W)
            entry: Entry strategy overriding the default

        Returns:
            RenderResult with image of shape (H, W, 4)
        """
        origins, directions = camera.generate_rays()
        return self.render_rays(
            origins, directions,
            background=background,
            box=box,
            boundary_textures=boundary_textures,
            depth=depth,
            entry=entry,
            chunk_size=self.config.chunk_rows * camera.width,
        )
