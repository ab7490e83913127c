"""Tests for cell traversal, entry strategies and rendering."""

import numpy as np
import pytest

from foam_raymarcher.bounds import OrientedBox, generate_boundary_textures
from foam_raymarcher.camera import Camera, CameraModel
from foam_raymarcher.foam.store import FoamStore
from foam_raymarcher.shading import shade
from foam_raymarcher.traversal import (
    BoundaryTextureEntry,
    FixedStartCell,
    FoamRenderer,
    NearestCellEntry,
    trace_ray,
)
from foam_raymarcher.utils.config import GammaMode, RenderConfig


LINEAR = RenderConfig(gamma_mode=GammaMode.NONE, scene_depth=10.0)


class TestTraceRay:
    """Tests for single-ray marching."""

    def test_two_cell_scenario(self, two_cell_foam):
        """Absorbing cell then clear cell: T = e^-1, color = (1 - e^-1) * shade."""
        result = trace_ray(two_cell_foam, [-1, 0, 0], [1, 0, 0], start_cell=0, config=LINEAR)

        assert result.steps == 2
        np.testing.assert_array_equal(result.cells, [0, 1])
        np.testing.assert_allclose(result.path[:, 1], [0.0, 1.0], atol=1e-6)
        np.testing.assert_allclose(result.path[:, 2], [1.0, 10.0], atol=1e-6)

        assert result.transmittance == pytest.approx(np.exp(-1.0), rel=1e-6)
        expected = (1.0 - np.exp(-1.0)) * np.array([1.0, 128 / 255, 0.0])
        np.testing.assert_allclose(result.color, expected, atol=1e-5)

    def test_isolated_cell(self, isolated_cell_foam):
        """A cell without faces composites once up to scene depth."""
        result = trace_ray(isolated_cell_foam, [0, 0, 0], [0, 0, -1], config=LINEAR)

        assert result.steps == 1
        assert result.path[0, 2] == pytest.approx(10.0)
        assert result.transmittance == pytest.approx(np.exp(-5.0), rel=1e-6)

        alpha = 1.0 - np.exp(-5.0)
        expected = alpha * np.array([51, 102, 204]) / 255
        np.testing.assert_allclose(result.color, expected, atol=1e-5)

    def test_zero_direction(self, two_cell_foam):
        """A zero direction marches nothing."""
        result = trace_ray(two_cell_foam, [-1, 0, 0], [0, 0, 0], config=LINEAR)
        assert result.steps == 0
        assert result.transmittance == 1.0
        np.testing.assert_array_equal(result.color, 0.0)

    def test_empty_interval(self, two_cell_foam):
        """No marching when the far bound is not beyond the start."""
        result = trace_ray(two_cell_foam, [-1, 0, 0], [1, 0, 0], t_start=2.0, t_end=2.0, config=LINEAR)
        assert result.steps == 0
        assert result.transmittance == 1.0

    def test_iteration_budget(self, two_cell_foam):
        """The step budget truncates the walk."""
        config = RenderConfig(gamma_mode=GammaMode.NONE, scene_depth=10.0, max_steps=1)
        result = trace_ray(two_cell_foam, [-1, 0, 0], [1, 0, 0], config=config)
        assert result.steps == 1
        assert result.transmittance == pytest.approx(np.exp(-1.0), rel=1e-6)

    def test_transmittance_threshold(self):
        """Opaque cells stop the ray early."""
        store = FoamStore(
            positions=[[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
            adjacency_offset=[1, 2],
            adjacency=[1, 0],
            density=[100.0, 0.0],
            colors=[[255, 255, 255], [0, 0, 0]],
        )
        result = trace_ray(store, [-1, 0, 0], [1, 0, 0], config=LINEAR)
        assert result.steps == 1
        assert result.transmittance < LINEAR.transmittance_threshold

    def test_gamma_modes(self, two_cell_foam):
        """Per-step gamma linearizes shaded colors, final gamma the sum."""
        alpha = 1.0 - np.exp(-1.0)
        shaded = np.array([1.0, 128 / 255, 0.0])

        per_step = trace_ray(
            two_cell_foam, [-1, 0, 0], [1, 0, 0],
            config=RenderConfig(gamma_mode=GammaMode.PER_STEP, scene_depth=10.0)
        )
        np.testing.assert_allclose(per_step.color, alpha * shaded ** 2.2, atol=1e-5)

        final = trace_ray(
            two_cell_foam, [-1, 0, 0], [1, 0, 0],
            config=RenderConfig(gamma_mode=GammaMode.FINAL, scene_depth=10.0)
        )
        np.testing.assert_allclose(final.color, (alpha * shaded) ** 2.2, atol=1e-5)

    def test_degree_zero_direction_invariant(self):
        """Without directional terms the shaded color ignores the view direction."""
        sh_rest = np.zeros((1, 3, 3), dtype=np.float32)
        sh_rest[0, 0] = 0.3
        sh_rest[0, 2] = -0.3
        store = FoamStore(
            positions=[[0.0, 0.0, 0.0]],
            adjacency_offset=[0],
            adjacency=np.zeros(0, dtype=np.uint32),
            density=[1.0],
            colors=[[100, 150, 200]],
            sh_rest=sh_rest,
        )

        flat = RenderConfig(gamma_mode=GammaMode.NONE, sh_degree=0, scene_depth=10.0)
        along_x = trace_ray(store, [0, 0, 0], [1, 0, 0], config=flat)
        along_y = trace_ray(store, [0, 0, 0], [0, 1, 0], config=flat)
        np.testing.assert_array_equal(along_x.color, along_y.color)

        directional = RenderConfig(gamma_mode=GammaMode.NONE, sh_degree=1, scene_depth=10.0)
        along_x = trace_ray(store, [0, 0, 0], [1, 0, 0], config=directional)
        along_y = trace_ray(store, [0, 0, 0], [0, 1, 0], config=directional)
        assert not np.allclose(along_x.color, along_y.color)

    def test_directional_shading_matches_numpy(self):
        """Kernel shading agrees with the NumPy shading function."""
        rng = np.random.default_rng(3)
        sh_rest = rng.normal(0.0, 0.2, size=(1, 15, 3)).astype(np.float32)
        store = FoamStore(
            positions=[[0.0, 0.0, 0.0]],
            adjacency_offset=[0],
            adjacency=np.zeros(0, dtype=np.uint32),
            density=[50.0],
            colors=[[90, 160, 30]],
            sh_rest=sh_rest,
        )
        direction = np.array([0.3, -0.5, 0.8])
        direction /= np.linalg.norm(direction)

        result = trace_ray(store, [0, 0, 0], direction, config=LINEAR)
        expected = shade(direction, store.harmonics[0], 3)
        np.testing.assert_allclose(result.color, expected * (1.0 - result.transmittance), atol=1e-5)

    def test_transmittance_monotone(self, random_foam):
        """Transmittance never increases and stays within [0, 1]."""
        config = RenderConfig(transmittance_threshold=0.0, scene_depth=5.0)
        rng = np.random.default_rng(11)
        entry = NearestCellEntry(random_foam)

        for _ in range(20):
            origin = rng.uniform(-0.8, 0.8, size=3)
            direction = rng.normal(size=3)
            start = entry.find_entry_cell(origin, direction)
            history = trace_ray(random_foam, origin, direction, start_cell=start, config=config).transmittance_history

            assert np.all(history >= 0.0) and np.all(history <= 1.0)
            assert np.all(np.diff(history) <= 0.0)

    def test_walk_follows_nearest_sites(self, foam_factory):
        """Every traversed segment lies in the Voronoi cell of the visited site."""
        rng = np.random.default_rng(5)
        store = foam_factory(rng.uniform(-1.0, 1.0, size=(150, 3)))
        config = RenderConfig(transmittance_threshold=0.0, scene_depth=3.0)
        entry = NearestCellEntry(store)
        positions = store.positions.astype(np.float64)

        for _ in range(20):
            origin = rng.uniform(-0.5, 0.5, size=3)
            direction = rng.normal(size=3)
            direction /= np.linalg.norm(direction)
            start = entry.find_entry_cell(origin, direction)

            result = trace_ray(store, origin, direction, start_cell=start, config=config)
            assert result.steps > 0
            assert result.path[-1, 2] == pytest.approx(3.0)
            np.testing.assert_allclose(result.path[1:, 1], result.path[:-1, 2])

            for cell, t_0, t_1, _ in result.path:
                mid = origin + direction * 0.5 * (t_0 + t_1)
                dist = np.sum((positions - mid) ** 2, axis=1)
                assert dist[int(cell)] <= dist.min() + 1e-5

    def test_invalid_start_cell(self, two_cell_foam):
        """Start cells must exist."""
        with pytest.raises(ValueError):
            trace_ray(two_cell_foam, [0, 0, 0], [1, 0, 0], start_cell=5)

    def test_sh_degree_above_stored(self, two_cell_foam):
        """Shading cannot use coefficients the foam does not store."""
        with pytest.raises(ValueError):
            trace_ray(two_cell_foam, [0, 0, 0], [1, 0, 0], config=RenderConfig(sh_degree=2))


class TestEntryStrategies:
    """Tests for entry-cell strategies."""

    def test_fixed_start_cell(self):
        """Every ray starts in the same cell."""
        cells = FixedStartCell(3).start_cells(np.zeros((4, 3)), np.ones((4, 3)))
        np.testing.assert_array_equal(cells, [3, 3, 3, 3])

    def test_fixed_start_cell_negative(self):
        """Negative cells are rejected."""
        with pytest.raises(ValueError):
            FixedStartCell(-1)

    def test_nearest_cell_matches_brute_force(self, random_foam):
        """Nearest-site entry agrees with an exhaustive search."""
        rng = np.random.default_rng(2)
        origins = rng.uniform(-1.5, 1.5, size=(50, 3))
        directions = rng.normal(size=(50, 3))
        t_start = rng.uniform(0.0, 0.5, size=50)

        cells = NearestCellEntry(random_foam).start_cells(origins, directions, t_start)

        points = origins + directions * t_start[:, None]
        for point, cell in zip(points, cells):
            assert cell == random_foam.find_nearest_cell(point)

    def test_shared_origin(self, random_foam):
        """Rays from one origin share one start cell."""
        origins = np.tile([0.1, 0.2, 0.3], (10, 1))
        directions = np.random.default_rng(0).normal(size=(10, 3))
        cells = NearestCellEntry(random_foam).start_cells(origins, directions)
        assert len(set(cells.tolist())) == 1

    def test_boundary_texture_entry_uses_fallback_inside(self, random_foam):
        """Rays starting inside the box never consult the textures."""
        box = OrientedBox(center=[0, 0, 0], size=[1.6, 1.6, 1.6])
        textures, _ = generate_boundary_textures(random_foam, box, resolution=8)
        entry = BoundaryTextureEntry(textures, box, FixedStartCell(7))

        cells = entry.start_cells(np.zeros((3, 3)), np.eye(3))
        np.testing.assert_array_equal(cells, [7, 7, 7])

    def test_boundary_texture_entry_from_outside(self, random_foam):
        """Rays entering the box start at the texel's cell."""
        box = OrientedBox(center=[0, 0, 0], size=[1.6, 1.6, 1.6])
        textures, _ = generate_boundary_textures(random_foam, box, resolution=17)
        entry = BoundaryTextureEntry(textures, box, FixedStartCell(0))

        # Aims at the center texel of the +Z face
        cell = entry.find_entry_cell([0, 0, 5], [0, 0, -1])
        assert cell == random_foam.find_nearest_cell([0, 0, 0.8])


class TestFoamRenderer:
    """Tests for image rendering."""

    @pytest.fixture
    def box(self):
        return OrientedBox(center=[0, 0, 0], size=[1.8, 1.8, 1.8])

    @pytest.fixture
    def camera(self):
        return Camera.looking_at([0, 0, 4], [0, 0, 0], 24, 16, fov=40)

    def test_render_shapes(self, random_foam, camera, box):
        """Render outputs are shaped like the image."""
        result = FoamRenderer(random_foam).render(camera, box=box)

        assert result.image.shape == (16, 24, 4)
        assert result.transmittance.shape == (16, 24)
        assert result.steps.shape == (16, 24)
        assert np.all(np.isfinite(result.image))
        assert np.all((result.transmittance >= 0) & (result.transmittance <= 1))
        assert result.steps.max() > 0

    def test_zero_direction_passes_background(self, random_foam):
        """Pixels without a ray keep their background exactly."""
        rng = np.random.default_rng(1)
        background = rng.uniform(size=(5, 4)).astype(np.float32)
        origins = rng.uniform(-0.5, 0.5, size=(5, 3))

        result = FoamRenderer(random_foam).render_rays(origins, np.zeros((5, 3)), background=background)
        np.testing.assert_array_equal(result.image, background)
        assert not result.active.any()

    def test_fisheye_outside_cone_passes_background(self, random_foam):
        """Fisheye pixels past the valid cone show the background."""
        camera = Camera.looking_at([0, 0, 0.2], [0, 0, 0], 16, 16, model=CameraModel.FISHEYE, fov=360)
        background = np.full((16, 16, 4), 0.25, dtype=np.float32)
        result = FoamRenderer(random_foam).render(camera, background=background)

        _, directions = camera.generate_rays()
        no_ray = np.linalg.norm(directions, axis=-1) == 0
        assert no_ray.any()
        np.testing.assert_array_equal(result.image[no_ray], background[no_ray])

    def test_box_miss_passes_background(self, random_foam, box):
        """Rays missing the box keep their background exactly."""
        origins = np.array([[5.0, 5.0, 5.0], [0.0, 0.0, 5.0]])
        directions = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        background = np.array([[0.1, 0.2, 0.3, 1.0], [0.4, 0.5, 0.6, 0.5]], dtype=np.float32)

        result = FoamRenderer(random_foam).render_rays(origins, directions, background=background, box=box)
        np.testing.assert_array_equal(result.image, background)

    def test_compositing(self, two_cell_foam):
        """Pixels are lerp(color, background, transmittance)."""
        background = np.array([[0.2, 0.4, 0.6, 0.5]])
        renderer = FoamRenderer(two_cell_foam, LINEAR)
        result = renderer.render_rays(
            [[-1.0, 0.0, 0.0]], [[1.0, 0.0, 0.0]],
            background=background, entry=FixedStartCell(0)
        )

        t = np.exp(-1.0)
        color = (1.0 - t) * np.array([1.0, 128 / 255, 0.0])
        expected_rgb = color + (background[0, :3] - color) * t
        np.testing.assert_allclose(result.image[0, :3], expected_rgb, atol=1e-5)
        assert result.image[0, 3] == pytest.approx(1.0 + (0.5 - 1.0) * t, abs=1e-5)
        assert result.transmittance[0] == pytest.approx(t, rel=1e-5)

    def test_idempotent(self, random_foam, camera, box):
        """Rendering twice gives bit-identical output."""
        renderer = FoamRenderer(random_foam, RenderConfig(chunk_rows=4))
        first = renderer.render(camera, box=box)
        second = renderer.render(camera, box=box)
        np.testing.assert_array_equal(first.image, second.image)
        np.testing.assert_array_equal(first.steps, second.steps)

    def test_chunking_does_not_change_output(self, random_foam, camera, box):
        """Row chunking is invisible in the result."""
        whole = FoamRenderer(random_foam, RenderConfig(chunk_rows=100)).render(camera, box=box)
        chunked = FoamRenderer(random_foam, RenderConfig(chunk_rows=3)).render(camera, box=box)
        np.testing.assert_array_equal(whole.image, chunked.image)

    def test_depth_clamp(self, two_cell_foam):
        """A depth buffer shortens the ray."""
        renderer = FoamRenderer(two_cell_foam, LINEAR)
        result = renderer.render_rays(
            [[-1.0, 0.0, 0.0]], [[1.0, 0.0, 0.0]],
            depth=[0.5], entry=FixedStartCell(0)
        )
        assert result.transmittance[0] == pytest.approx(np.exp(-0.5), rel=1e-5)
        assert result.steps[0] == 1

    def test_boundary_textures_render(self, random_foam, camera, box):
        """Texture entry renders a valid image."""
        textures, _ = generate_boundary_textures(random_foam, box, resolution=32)
        result = FoamRenderer(random_foam).render(camera, box=box, boundary_textures=textures)
        assert np.all(np.isfinite(result.image))
        assert result.active.any()

    def test_textures_without_box_warns(self, random_foam, camera, box):
        """Textures are ignored with a warning when no box is given."""
        textures, _ = generate_boundary_textures(random_foam, box, resolution=4)
        with pytest.warns(UserWarning):
            FoamRenderer(random_foam).render(camera, boundary_textures=textures)

    def test_transparent_hull(self, random_foam):
        """Hull cells lose their density."""
        renderer = FoamRenderer(random_foam, RenderConfig(transparent_hull=True))
        hull = random_foam.hull_cells()
        assert np.all(renderer.store.density[hull] == 0)
        assert np.any(random_foam.density[hull] > 0)

    def test_transparent_hull_flat_foam(self, planar_foam):
        """A coplanar foam becomes fully transparent instead of failing."""
        renderer = FoamRenderer(planar_foam, RenderConfig(transparent_hull=True))
        assert np.all(renderer.store.density == 0)
        assert np.all(planar_foam.density > 0)

    def test_empty_foam_warns(self, camera):
        """An empty foam renders the background."""
        store = FoamStore(
            positions=np.zeros((0, 3)),
            adjacency_offset=np.zeros(0),
            adjacency=np.zeros(0),
            density=np.zeros(0),
            colors=np.zeros((0, 3)),
        )
        with pytest.warns(UserWarning):
            result = FoamRenderer(store).render(camera)
        np.testing.assert_allclose(result.image[..., 3], 1.0)
        np.testing.assert_allclose(result.image[..., :3], 0.0)

    def test_stats(self, random_foam, camera, box):
        """Render statistics summarize the step counts."""
        stats = FoamRenderer(random_foam).render(camera, box=box).stats()
        assert stats["pixels"] == 16 * 24
        assert 0 < stats["active_rays"] <= stats["pixels"]
        assert stats["max_steps"] >= stats["mean_steps"] > 0

    def test_mismatched_rays(self, random_foam):
        """Origins and directions must match."""
        with pytest.raises(ValueError):
            FoamRenderer(random_foam).render_rays(np.zeros((3, 3)), np.zeros((2, 3)))
