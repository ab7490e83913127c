"""Foam scene storage and exchange formats."""

from .store import FoamStore, build_adjacency_diff
from .attributes import attribute_words, pack_attributes, unpack_attributes
from .ply_io import load_foam_ply, save_foam_ply
from .reorder import morton_codes, morton_reorder

__all__ = [
    "FoamStore",
    "build_adjacency_diff",
    "attribute_words",
    "pack_attributes",
    "unpack_attributes",
    "load_foam_ply",
    "save_foam_ply",
    "morton_codes",
    "morton_reorder",
]
