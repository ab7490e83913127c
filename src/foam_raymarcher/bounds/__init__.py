"""Scene bounds: oriented box clipping and boundary entry textures.

Example:
    >>> from foam_raymarcher.bounds import OrientedBox, generate_boundary_textures
    >>> box = OrientedBox(center=[0, 0, 0], size=[2, 2, 2])
    >>> textures, boundary_cells = generate_boundary_textures(store, box, resolution=128)
    >>> hits = box.intersect(origins, directions)
    >>> cells = textures.lookup(hits.face[hits.hit], hits.local_entry[hits.hit])
"""

from .box import OrientedBox, BoxHits, FACE_NORMALS, struck_face
from .boundary_textures import (
    BoundaryTextures,
    FACE_AXES,
    INDEX_LIMIT,
    index_to_color,
    color_to_index,
    face_uv,
    generate_boundary_texture,
    generate_boundary_textures,
    remap_boundary_texture,
)

__all__ = [
    # Box clipping
    "OrientedBox",
    "BoxHits",
    "FACE_NORMALS",
    "struck_face",

    # Boundary textures
    "BoundaryTextures",
    "FACE_AXES",
    "INDEX_LIMIT",
    "index_to_color",
    "color_to_index",
    "face_uv",
    "generate_boundary_texture",
    "generate_boundary_textures",
    "remap_boundary_texture",
]
