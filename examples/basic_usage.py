"""Basic usage example for the foam ray marcher."""

import sys
from pathlib import Path

import numpy as np
from scipy.spatial import Delaunay

from foam_raymarcher import (
    Camera,
    CameraModel,
    FoamRenderer,
    FoamStore,
    OrientedBox,
    RenderConfig,
    generate_boundary_textures,
    load_foam_ply,
)


def synthetic_foam(n_cells: int = 2000, seed: int = 0) -> FoamStore:
    """Random foam whose adjacency is the Delaunay graph of its sites.

    A dense ball of colored cells in the middle of clear space.
    """
    rng = np.random.default_rng(seed)
    points = rng.uniform(-1.0, 1.0, size=(n_cells, 3))
    indptr, indices = Delaunay(points).vertex_neighbor_vertices

    radius = np.linalg.norm(points, axis=1)
    density = np.where(radius < 0.6, 8.0, 0.0)
    colors = np.clip((points * 0.5 + 0.5) * 255, 0, 255).astype(np.uint8)

    return FoamStore(
        positions=points,
        adjacency_offset=indptr[1:],
        adjacency=indices,
        density=density,
        colors=colors,
    )


def example_render(store: FoamStore, box: OrientedBox):
    """Render a perspective view through boundary textures."""
    textures, boundary_cells = generate_boundary_textures(store, box, resolution=128, show_progress=True)
    print(f"{len(boundary_cells)} cells touch the bounding box")

    camera = Camera.looking_at([0.0, 0.5, 3.0], [0.0, 0.0, 0.0], 320, 240, fov=45)
    renderer = FoamRenderer(store, RenderConfig(show_progress=True))
    result = renderer.render(camera, box=box, boundary_textures=textures)

    print(f"Render stats: {result.stats()}")
    output = Path("output/basic_render.npy")
    output.parent.mkdir(parents=True, exist_ok=True)
    np.save(output, result.image)
    np.save(output.with_name("basic_render_steps.npy"), result.steps_image())


def example_fisheye(store: FoamStore):
    """Render a fisheye view from inside the foam, without a box."""
    camera = Camera.looking_at([0.0, 0.0, 0.9], [0.0, 0.0, 0.0], 256, 256,
                               model=CameraModel.FISHEYE, fov=180)
    result = FoamRenderer(store, RenderConfig(scene_depth=5.0)).render(camera)
    print(f"Fisheye: {int((~result.active).sum())} pixels outside the lens cone")


if __name__ == "__main__":
    if len(sys.argv) > 1:
        store, box = load_foam_ply(sys.argv[1])
        if box is None:
            lo, hi = store.positions.min(axis=0), store.positions.max(axis=0)
            box = OrientedBox(center=(lo + hi) / 2, size=np.maximum(hi - lo, 1e-3))
    else:
        store = synthetic_foam()
        box = OrientedBox(center=[0, 0, 0], size=[1.8, 1.8, 1.8])

    example_render(store, box)
    example_fisheye(store)
