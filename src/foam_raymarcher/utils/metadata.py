"""Metadata generation for rendered images."""

import json
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime


class MetadataWriter:
    """Handles creation and writing of render metadata files."""

    @staticmethod
    def write_render_metadata(
        output_path: Path,
        config: Dict,
        camera: Dict,
        stats: Dict,
        source_file: Optional[str] = None
    ):
        """Write metadata for a single rendered image.

        Args:
            output_path: Path to the metadata .json file
            config: Render configuration dictionary
            camera: Camera description dictionary
            stats: Statistics from the render (timings, step counts)
            source_file: Foam file the image was rendered from (optional)
        """
        metadata = {
            "version": "1.0",
            "created_at": datetime.now().isoformat(),
            "source_file": str(source_file) if source_file is not None else None,
            "config": config,
            "camera": camera,
            "stats": stats,
        }

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(metadata, f, indent=2)

    @staticmethod
    def read_metadata(metadata_path: Path) -> Dict[str, Any]:
        """Read a metadata file written by ``write_render_metadata``.

        Args:
            metadata_path: Path to metadata .json file

        Returns:
            Metadata dictionary
        """
        with open(metadata_path, "r") as f:
            return json.load(f)
