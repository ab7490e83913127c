"""Basic tests for configuration, metadata and the command-line pipeline."""

import json
import sys

import numpy as np
import pytest

from foam_raymarcher import __version__
from foam_raymarcher.bounds import OrientedBox
from foam_raymarcher.foam import save_foam_ply
from foam_raymarcher.render import main, render_foam
from foam_raymarcher.utils import GammaMode, MetadataWriter, RenderConfig


def test_version():
    """Package exposes its version."""
    assert __version__ == "0.1.0"


class TestRenderConfig:
    """Tests for RenderConfig."""

    def test_defaults(self):
        """Test default configuration."""
        config = RenderConfig()
        assert config.max_steps == 512
        assert config.transmittance_threshold == 0.01
        assert config.scene_depth == 10000.0
        assert config.gamma_mode == GammaMode.PER_STEP
        assert config.background_color == (0.0, 0.0, 0.0, 1.0)

    def test_rgb_background_gets_alpha(self):
        """Three-component backgrounds are opaque."""
        assert RenderConfig(background_color=(0.1, 0.2, 0.3)).background_color == (0.1, 0.2, 0.3, 1.0)

    def test_gamma_mode_from_string(self):
        """Gamma modes accept their string values."""
        assert RenderConfig(gamma_mode="final").gamma_mode == GammaMode.FINAL
        assert [m.kernel_code for m in GammaMode] == [0, 1, 2]

    @pytest.mark.parametrize("kwargs", [
        dict(sh_degree=4),
        dict(max_steps=0),
        dict(transmittance_threshold=1.0),
        dict(scene_depth=0.0),
        dict(gamma=0.0),
        dict(chunk_rows=0),
        dict(background_color=(1.0, 2.0)),
        dict(gamma_mode="sometimes"),
    ])
    def test_validation(self, kwargs):
        """Invalid values are rejected."""
        with pytest.raises(ValueError):
            RenderConfig(**kwargs)

    def test_resolve_sh_degree(self):
        """The shading degree defaults to, and is capped by, the stored one."""
        assert RenderConfig().resolve_sh_degree(2) == 2
        assert RenderConfig(sh_degree=1).resolve_sh_degree(3) == 1
        with pytest.raises(ValueError):
            RenderConfig(sh_degree=3).resolve_sh_degree(1)

    def test_to_dict_is_json(self):
        """Configurations serialize to JSON."""
        data = json.loads(json.dumps(RenderConfig(gamma_mode=GammaMode.NONE).to_dict()))
        assert data["gamma_mode"] == "none"
        assert data["background_color"] == [0.0, 0.0, 0.0, 1.0]


def test_metadata_round_trip(tmp_path):
    """Metadata written for a render reads back unchanged."""
    path = tmp_path / "meta" / "render.json"
    MetadataWriter.write_render_metadata(
        path,
        config=RenderConfig().to_dict(),
        camera={"model": "perspective"},
        stats={"mean_steps": 3.5},
        source_file="scene.ply",
    )

    metadata = MetadataWriter.read_metadata(path)
    assert metadata["source_file"] == "scene.ply"
    assert metadata["camera"] == {"model": "perspective"}
    assert metadata["stats"]["mean_steps"] == 3.5
    assert "created_at" in metadata


class TestRenderPipeline:
    """End-to-end rendering from a PLY file."""

    @pytest.fixture
    def ply_path(self, random_foam, tmp_path):
        box = OrientedBox(center=[0, 0, 0], size=[1.6, 1.6, 1.6])
        return save_foam_ply(tmp_path / "scene.ply", random_foam, box)

    def test_render_foam(self, ply_path, tmp_path):
        """Rendering writes an image and its metadata."""
        output = tmp_path / "out" / "image.npy"
        stats = render_foam(
            ply_path, output, RenderConfig(), width=12, height=8,
            texture_resolution=8, texture_cache=tmp_path / "textures.npz",
            reorder=True, save_steps=True,
        )

        image = np.load(output)
        assert image.shape == (8, 12, 4)
        assert (tmp_path / "out" / "image_steps.npy").exists()
        assert (tmp_path / "textures.npz").exists()
        assert stats["active_rays"] > 0

        metadata = MetadataWriter.read_metadata(output.with_suffix(".json"))
        assert metadata["camera"]["width"] == 12
        assert metadata["source_file"] == str(ply_path)

    def test_texture_cache_reused(self, ply_path, tmp_path, capsys):
        """A second render loads the cached textures instead of regenerating them."""
        cache = tmp_path / "scene.cache"
        kwargs = dict(width=6, height=4, texture_resolution=8, texture_cache=cache)

        render_foam(ply_path, tmp_path / "first.npy", RenderConfig(), **kwargs)
        assert cache.exists()
        assert "Generated" in capsys.readouterr().out

        render_foam(ply_path, tmp_path / "second.npy", RenderConfig(), **kwargs)
        assert f"Loaded boundary textures from {cache}" in capsys.readouterr().out
        np.testing.assert_array_equal(np.load(tmp_path / "first.npy"), np.load(tmp_path / "second.npy"))

    def test_cli(self, ply_path, tmp_path, monkeypatch):
        """The command-line entry point renders a fisheye view."""
        output = tmp_path / "cli.npy"
        monkeypatch.setattr(sys, "argv", [
            "foam-render", str(ply_path),
            "--output", str(output),
            "--width", "6", "--height", "4",
            "--camera-model", "fisheye", "--fov", "120",
            "--gamma-mode", "final",
            "--background", "0.5", "0.5", "0.5",
            "--transparent-hull",
        ])
        main()
        assert np.load(output).shape == (4, 6, 4)
