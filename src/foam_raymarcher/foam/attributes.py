"""Packed per-cell attribute layout.

Each cell packs into ``2 + 2 * ((L+1)^2 - 1)`` little-endian uint32 words:

    word 0          density (half) | 0 << 16
    word 1          red | green << 8 | blue << 16
    word 2k         sh_k.red (half) | sh_k.green (half) << 16    for k >= 1
    word 2k + 1     sh_k.blue (half) | 0 << 16

This matches the buffers consumed by the GPU shaders of existing radiance
foam viewers, so precomputed foams can be exchanged without re-encoding.
"""

import numpy as np
from typing import Tuple

from ..shading.spherical_harmonics import sh_dim


def attribute_words(sh_degree: int) -> int:
    """Number of uint32 words per cell for ``sh_degree``."""
    return 2 + 2 * (sh_dim(sh_degree) - 1)


def _half_bits(values: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(values, dtype=np.float16).view(np.uint16).astype(np.uint32)


def _bits_half(words: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(words & 0xFFFF, dtype=np.uint16).view(np.float16).astype(np.float32)


def pack_attributes(
    density: np.ndarray,
    colors: np.ndarray,
    sh_rest: np.ndarray
) -> np.ndarray:
    """Pack density, base colors and SH coefficients.

    Args:
        density: Per-cell density, shape (N,)
        colors: Base colors as bytes, shape (N, 3)
        sh_rest: Higher SH coefficients, shape (N, (L+1)^2 - 1, 3)

    Returns:
        Packed words, shape (N, 2 + 2 * ((L+1)^2 - 1)), uint32
    """
    density = np.asarray(density, dtype=np.float32).reshape(-1)
    colors = np.asarray(colors, dtype=np.uint8).reshape(-1, 3)
    sh_rest = np.asarray(sh_rest, dtype=np.float32)
    n_cells = density.shape[0]
    n_rest = sh_rest.shape[1]

    words = np.zeros((n_cells, 2 + 2 * n_rest), dtype=np.uint32)
    words[:, 0] = _half_bits(density)

    rgb = colors.astype(np.uint32)
    words[:, 1] = rgb[:, 0] | (rgb[:, 1] << 8) | (rgb[:, 2] << 16)

    if n_rest:
        halves = _half_bits(sh_rest)  # (N, n_rest, 3)
        words[:, 2::2] = halves[:, :, 0] | (halves[:, :, 1] << 16)
        words[:, 3::2] = halves[:, :, 2]

    return words


def unpack_attributes(
    words: np.ndarray,
    sh_degree: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Inverse of :func:`pack_attributes`.

    Args:
        words: Packed words, shape (N, 2 + 2 * ((L+1)^2 - 1))
        sh_degree: Degree the words were packed with

    Returns:
        Tuple of (density (N,), colors (N, 3) uint8, sh_rest (N, (L+1)^2 - 1, 3))
    """
    expected = attribute_words(sh_degree)
    words = np.asarray(words, dtype=np.uint32)
    if words.ndim == 1:
        words = words.reshape(-1, expected)
    if words.shape[1] != expected:
        raise ValueError(
            f"SH degree {sh_degree} packs {expected} words per cell, got {words.shape[1]}"
        )

    density = _bits_half(words[:, 0])

    colors = np.stack([
        words[:, 1] & 0xFF,
        (words[:, 1] >> 8) & 0xFF,
        (words[:, 1] >> 16) & 0xFF,
    ], axis=-1).astype(np.uint8)

    rg = words[:, 2::2]
    b = words[:, 3::2]
    sh_rest = np.stack([
        _bits_half(rg),
        _bits_half(rg >> 16),
        _bits_half(b),
    ], axis=-1)

    return density, colors, sh_rest
