"""Numba cell traversal kernels.

A ray walks the foam cell by cell. Inside the current cell the exit point
is the nearest bisector-plane crossing ahead of the ray, found by a
linear scan of the cell's faces; cells are convex, so no acceleration
structure is needed. Each visited cell absorbs light following
Beer-Lambert and contributes its view-dependent color.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Optional

from numba import njit, prange

from ..shading.spherical_harmonics import MAX_SH_COEFFS, _eval_sh_basis_into, _shade_cell
from ..utils.config import GammaMode, RenderConfig

GAMMA_NONE = 0
GAMMA_PER_STEP = 1
GAMMA_FINAL = 2


@njit(cache=True)
def _march_ray(
    ox, oy, oz, dx, dy, dz,
    cell, t_start, t_end,
    positions, adjacency_offset, adjacency, adjacency_diff,
    density, harmonics, sh_degree,
    threshold, max_steps, gamma_mode, gamma,
    basis, rgb, trace
):
    """March one ray from ``cell`` over ``[t_start, t_end)``.

    ``trace`` is either empty or has ``max_steps`` rows that receive
    (cell, t_0, t_1, transmittance) per visited cell.

    Returns:
        Tuple of (r, g, b, transmittance, steps). Colors are the
        accumulated, premultiplied contributions.
    """
    r = 0.0
    g = 0.0
    b = 0.0
    transmittance = 1.0
    steps = 0

    if t_end <= t_start:
        return r, g, b, transmittance, steps

    n_coeffs = (sh_degree + 1) * (sh_degree + 1)
    _eval_sh_basis_into(dx, dy, dz, sh_degree, basis)

    t_0 = t_start
    for _ in range(max_steps):
        adj_from = 0
        if cell > 0:
            adj_from = adjacency_offset[cell - 1]
        adj_to = adjacency_offset[cell]

        px = positions[cell, 0]
        py = positions[cell, 1]
        pz = positions[cell, 2]

        t_1 = t_end
        next_face = -1
        for f in range(adj_from, adj_to):
            fx = adjacency_diff[f, 0]
            fy = adjacency_diff[f, 1]
            fz = adjacency_diff[f, 2]
            denom = fx * dx + fy * dy + fz * dz
            if denom <= 0.0:
                continue

            # Bisector plane through the midpoint of the two sites
            mx = px + 0.5 * fx - ox
            my = py + 0.5 * fy - oy
            mz = pz + 0.5 * fz - oz
            t = (mx * fx + my * fy + mz * fz) / denom
            if t > t_0 and t < t_1:
                t_1 = t
                next_face = f

        alpha = 1.0 - math.exp(-density[cell] * (t_1 - t_0))
        weight = transmittance * alpha
        if weight > 0.0:
            _shade_cell(harmonics, cell, basis, n_coeffs, rgb)
            if gamma_mode == GAMMA_PER_STEP:
                for c in range(3):
                    rgb[c] = rgb[c] ** gamma
            r += rgb[0] * weight
            g += rgb[1] * weight
            b += rgb[2] * weight
        transmittance *= 1.0 - alpha

        if steps < trace.shape[0]:
            trace[steps, 0] = cell
            trace[steps, 1] = t_0
            trace[steps, 2] = t_1
            trace[steps, 3] = transmittance
        steps += 1

        if next_face < 0 or t_1 >= t_end or transmittance < threshold:
            break

        cell = adjacency[next_face]
        t_0 = t_1

    return r, g, b, transmittance, steps


@njit(parallel=True, cache=True)
def _render_rays(
    origins, directions, active, start_cells, t_start, t_end,
    positions, adjacency_offset, adjacency, adjacency_diff,
    density, harmonics, sh_degree,
    threshold, max_steps, gamma_mode, gamma,
    background, out, out_transmittance, out_steps
):
    """Render independent rays in parallel and composite over ``background``."""
    no_trace = np.empty((0, 4), dtype=np.float64)

    for i in prange(origins.shape[0]):
        if not active[i]:
            for c in range(4):
                out[i, c] = background[i, c]
            out_transmittance[i] = 1.0
            out_steps[i] = 0
            continue

        basis = np.empty(MAX_SH_COEFFS, dtype=np.float64)
        rgb = np.empty(3, dtype=np.float64)
        r, g, b, transmittance, steps = _march_ray(
            origins[i, 0], origins[i, 1], origins[i, 2],
            directions[i, 0], directions[i, 1], directions[i, 2],
            start_cells[i], t_start[i], t_end[i],
            positions, adjacency_offset, adjacency, adjacency_diff,
            density, harmonics, sh_degree,
            threshold, max_steps, gamma_mode, gamma,
            basis, rgb, no_trace
        )

        if gamma_mode == GAMMA_FINAL:
            r = r ** gamma
            g = g ** gamma
            b = b ** gamma

        # lerp(color, background, transmittance)
        out[i, 0] = r + (background[i, 0] - r) * transmittance
        out[i, 1] = g + (background[i, 1] - g) * transmittance
        out[i, 2] = b + (background[i, 2] - b) * transmittance
        out[i, 3] = 1.0 + (background[i, 3] - 1.0) * transmittance
        out_transmittance[i] = transmittance
        out_steps[i] = steps


@dataclass
class TraceResult:
    """Outcome of tracing a single ray.

    Attributes:
        color: Accumulated RGB before compositing with a background, shape (3,)
        transmittance: Remaining transmittance
        steps: Number of cells visited
        path: Per-step records (cell, t_0, t_1, transmittance after the cell),
            shape (steps, 4)
    """

    color: np.ndarray
    transmittance: float
    steps: int
    path: np.ndarray

    @property
    def cells(self) -> np.ndarray:
        """Visited cells in order."""
        return self.path[:, 0].astype(np.int64)

    @property
    def transmittance_history(self) -> np.ndarray:
        """Transmittance after each visited cell."""
        return self.path[:, 3]

    def composite(self, background) -> np.ndarray:
        """RGBA of this ray composited over ``background`` (RGB or RGBA)."""
        background = np.asarray(background, dtype=np.float64).reshape(-1)
        alpha = background[3] if background.shape[0] == 4 else 1.0
        rgb = self.color + (background[:3] - self.color) * self.transmittance
        return np.append(rgb, 1.0 + (alpha - 1.0) * self.transmittance)


def trace_ray(
    store,
    origin: np.ndarray,
    direction: np.ndarray,
    start_cell: int = 0,
    t_start: float = 0.0,
    t_end: Optional[float] = None,
    config: Optional[RenderConfig] = None
) -> TraceResult:
    """Trace one ray and record every visited cell.

    Args:
        store: FoamStore to traverse
        origin: Ray origin (3,)
        direction: Ray direction (3,); normalized before marching
        start_cell: Cell containing the point ``origin + t_start * direction``
        t_start: Distance at which marching begins
        t_end: Far bound (defaults to ``config.scene_depth``)
        config: Render configuration (defaults to ``RenderConfig()``)

    Returns:
        TraceResult; a zero direction yields no steps and full transmittance
    """
    config = config or RenderConfig()
    sh_degree = config.resolve_sh_degree(store.sh_degree)
    t_end = config.scene_depth if t_end is None else float(t_end)

    origin = np.asarray(origin, dtype=np.float64).reshape(3)
    direction = np.asarray(direction, dtype=np.float64).reshape(3)
    norm = np.linalg.norm(direction)

    path = np.zeros((config.max_steps, 4), dtype=np.float64)
    if norm == 0 or store.cell_count == 0:
        return TraceResult(np.zeros(3), 1.0, 0, path[:0])
    if not 0 <= start_cell < store.cell_count:
        raise ValueError(f"start_cell {start_cell} out of range for {store.cell_count} cells")
    direction = direction / norm

    arrays = store.kernel_arrays()
    gamma_mode = GammaMode(config.gamma_mode).kernel_code
    r, g, b, transmittance, steps = _march_ray(
        origin[0], origin[1], origin[2],
        direction[0], direction[1], direction[2],
        int(start_cell), float(t_start), t_end,
        arrays["positions"], arrays["adjacency_offset"], arrays["adjacency"],
        arrays["adjacency_diff"], arrays["density"], arrays["harmonics"], sh_degree,
        config.transmittance_threshold, config.max_steps, gamma_mode, config.gamma,
        np.empty(MAX_SH_COEFFS, dtype=np.float64), np.empty(3, dtype=np.float64), path
    )

    color = np.array([r, g, b])
    if gamma_mode == GAMMA_FINAL:
        color = color ** config.gamma

    return TraceResult(color, float(transmittance), int(steps), path[:steps].copy())
