"""Command-line rendering of foam PLY files."""

import time
import numpy as np
from pathlib import Path
from typing import Optional

from .bounds.boundary_textures import BoundaryTextures, generate_boundary_textures
from .camera.rays import Camera, CameraModel
from .foam.ply_io import load_foam_ply
from .foam.reorder import morton_reorder
from .traversal.renderer import FoamRenderer
from .utils.config import GammaMode, RenderConfig
from .utils.metadata import MetadataWriter


def _default_view(store, box) -> tuple:
    """Eye and target framing the box (or the foam extent)."""
    if box is not None:
        target = box.center
        radius = 0.5 * float(np.linalg.norm(box.size))
    else:
        lo = store.positions.min(axis=0).astype(np.float64)
        hi = store.positions.max(axis=0).astype(np.float64)
        target = 0.5 * (lo + hi)
        radius = 0.5 * float(np.linalg.norm(hi - lo))
    radius = max(radius, 1e-3)
    return target + np.array([0.0, 0.0, 2.5 * radius]), target


def render_foam(
    ply_path: Path,
    output_path: Path,
    config: RenderConfig,
    width: int = 640,
    height: int = 480,
    model: CameraModel = CameraModel.PERSPECTIVE,
    fov: float = 60.0,
    eye: Optional[np.ndarray] = None,
    target: Optional[np.ndarray] = None,
    up=(0.0, 1.0, 0.0),
    use_box: bool = True,
    texture_resolution: int = 0,
    texture_cache: Optional[Path] = None,
    reorder: bool = False,
    save_steps: bool = False
) -> dict:
    """Render a foam PLY to ``output_path`` (.npy) plus a metadata sidecar.

    Returns:
        Render statistics
    """
    output_path = Path(output_path)
    store, box = load_foam_ply(ply_path)
    print(f"Loaded {store.cell_count} cells, {store.face_count} faces, "
          f"SH degree {store.sh_degree} from {ply_path}")

    if not use_box:
        box = None

    if reorder:
        store, _, _ = morton_reorder(store)
        print("Reordered cells along a Morton curve")

    textures = None
    if texture_resolution > 0 and box is not None:
        if texture_cache is not None and Path(texture_cache).exists():
            textures = BoundaryTextures.load(texture_cache)
            print(f"Loaded boundary textures from {texture_cache}")
        else:
            start_time = time.time()
            textures, boundary_cells = generate_boundary_textures(
                store, box, resolution=texture_resolution, show_progress=config.show_progress
            )
            print(f"Generated {texture_resolution}x{texture_resolution} boundary textures "
                  f"({len(boundary_cells)} boundary cells) in {time.time() - start_time:.1f}s")
            if texture_cache is not None:
                textures.save(texture_cache)
    elif texture_resolution > 0:
        print("No bounding box available; boundary textures skipped")

    default_eye, default_target = _default_view(store, box)
    eye = default_eye if eye is None else np.asarray(eye, dtype=np.float64)
    target = default_target if target is None else np.asarray(target, dtype=np.float64)
    camera = Camera.looking_at(eye, target, width, height, up=up, model=model, fov=fov)

    renderer = FoamRenderer(store, config)
    result = renderer.render(camera, box=box, boundary_textures=textures)
    stats = result.stats()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    np.save(output_path, result.image)
    if save_steps:
        np.save(output_path.with_name(output_path.stem + "_steps.npy"), result.steps)

    MetadataWriter.write_render_metadata(
        output_path.with_suffix(".json"),
        config=config.to_dict(),
        camera=camera.to_dict(),
        stats=stats,
        source_file=str(ply_path),
    )

    print(f"Rendered {width}x{height} in {stats['elapsed_seconds']:.2f}s "
          f"(mean {stats['mean_steps']:.1f} steps/ray) -> {output_path}")
    return stats


def main():
    """Render a foam PLY file from the command line."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Render a radiance foam PLY file by cell traversal"
    )
    parser.add_argument(
        "ply",
        type=Path,
        help="Foam PLY file"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("render.npy"),
        help="Output image (.npy, float32 RGBA); metadata goes next to it as .json"
    )
    parser.add_argument("--width", type=int, default=640, help="Image width")
    parser.add_argument("--height", type=int, default=480, help="Image height")
    parser.add_argument(
        "--camera-model",
        choices=[m.value for m in CameraModel],
        default=CameraModel.PERSPECTIVE.value,
        help="Projection model"
    )
    parser.add_argument("--fov", type=float, default=60.0, help="Field of view in degrees")
    parser.add_argument("--eye", type=float, nargs=3, default=None, help="Camera position")
    parser.add_argument("--target", type=float, nargs=3, default=None, help="Point the camera looks at")
    parser.add_argument("--up", type=float, nargs=3, default=[0.0, 1.0, 0.0], help="Camera up vector")
    parser.add_argument("--sh-degree", type=int, default=None, help="SH degree to shade with")
    parser.add_argument("--max-steps", type=int, default=512, help="Cells visited per ray at most")
    parser.add_argument(
        "--threshold",
        type=float,
        default=0.01,
        help="Stop rays once transmittance falls below this"
    )
    parser.add_argument(
        "--gamma-mode",
        choices=[m.value for m in GammaMode],
        default=GammaMode.PER_STEP.value,
        help="Where shaded colors are linearized"
    )
    parser.add_argument(
        "--background",
        type=float,
        nargs="+",
        default=[0.0, 0.0, 0.0, 1.0],
        help="Background RGB or RGBA"
    )
    parser.add_argument("--no-box", action="store_true", help="Ignore the PLY bounding box")
    parser.add_argument(
        "--texture-resolution",
        type=int,
        default=0,
        help="Generate boundary textures at this resolution (0 disables)"
    )
    parser.add_argument("--texture-cache", type=Path, default=None, help="Boundary texture .npz cache")
    parser.add_argument("--transparent-hull", action="store_true", help="Make convex-hull cells transparent")
    parser.add_argument("--reorder", action="store_true", help="Morton-reorder cells before rendering")
    parser.add_argument("--save-steps", action="store_true", help="Also save the per-pixel step counts")
    parser.add_argument("--progress", action="store_true", help="Show progress bars")

    args = parser.parse_args()

    config = RenderConfig(
        sh_degree=args.sh_degree,
        max_steps=args.max_steps,
        transmittance_threshold=args.threshold,
        gamma_mode=GammaMode(args.gamma_mode),
        background_color=tuple(args.background),
        transparent_hull=args.transparent_hull,
        show_progress=args.progress,
    )

    render_foam(
        ply_path=args.ply,
        output_path=args.output,
        config=config,
        width=args.width,
        height=args.height,
        model=CameraModel(args.camera_model),
        fov=args.fov,
        eye=args.eye,
        target=args.target,
        up=tuple(args.up),
        use_box=not args.no_box,
        texture_resolution=args.texture_resolution,
        texture_cache=args.texture_cache,
        reorder=args.reorder,
        save_steps=args.save_steps,
    )


if __name__ == "__main__":
    main()
