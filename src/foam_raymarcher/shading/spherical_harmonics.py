"""Spherical harmonics evaluation and per-cell shading.

Provides NumPy implementations of the real SH basis (degree 0 to 3) and of
the foam shading rule, plus a Numba twin used inside the traversal kernel.

Basis ordering and signs follow the convention used by splatting and
radiance foam exporters:
    Y_0^0, Y_1^-1, Y_1^0, Y_1^1, Y_2^-2 ... Y_2^2, Y_3^-3 ... Y_3^3
"""

import numpy as np
from numba import njit

# SH normalization constants
SH_C0 = 0.28209479177387814   # 1 / (2 * sqrt(pi))
SH_C1 = 0.4886025119029199    # sqrt(3 / (4 * pi))
SH_C2 = (
    1.0925484305920792,       # sqrt(15 / (4 * pi))
    -1.0925484305920792,
    0.31539156525252005,      # sqrt(5 / (16 * pi))
    -1.0925484305920792,
    0.5462742152960396,       # sqrt(15 / (16 * pi))
)
SH_C3 = (
    -0.5900435899266435,      # sqrt(35 / (32 * pi))
    2.890611442640554,        # sqrt(105 / (4 * pi))
    -0.4570457994644658,      # sqrt(21 / (32 * pi))
    0.3731763325901154,       # sqrt(7 / (16 * pi))
    -0.4570457994644658,
    1.445305721320277,        # sqrt(105 / (16 * pi))
    -0.5900435899266435,
)

MAX_SH_DEGREE = 3
MAX_SH_COEFFS = 16  # (3+1)^2

BYTE_INV = 1.0 / 255.0


def sh_dim(degree: int) -> int:
    """Get number of SH coefficients for a given degree.

    Args:
        degree: SH degree (l_max)

    Returns:
        Number of coefficients, (degree + 1)^2
    """
    if not 0 <= degree <= MAX_SH_DEGREE:
        raise ValueError(f"SH degree must be in [0, {MAX_SH_DEGREE}], got {degree}")
    return (degree + 1) ** 2


def get_sh_order(n_coeffs: int) -> int:
    """Get SH degree from number of coefficients.

    Args:
        n_coeffs: Number of SH coefficients

    Returns:
        SH degree (l_max)

    Raises:
        ValueError: If n_coeffs is not a valid SH coefficient count
    """
    order = int(round(np.sqrt(n_coeffs))) - 1
    if order < 0 or (order + 1) ** 2 != n_coeffs:
        raise ValueError(f"Invalid SH coefficient count: {n_coeffs}")
    return order


def eval_sh_basis(directions: np.ndarray, degree: int = MAX_SH_DEGREE) -> np.ndarray:
    """Evaluate the normalized real SH basis up to ``degree``.

    Args:
        directions: Unit vectors, shape (..., 3)
        degree: SH degree in [0, 3]

    Returns:
        Basis values, shape (..., (degree + 1)^2)
    """
    n_coeffs = sh_dim(degree)
    directions = np.asarray(directions, dtype=np.float64)
    orig_shape = directions.shape[:-1]

    dirs = directions.reshape(-1, 3)
    x, y, z = dirs[:, 0], dirs[:, 1], dirs[:, 2]

    basis = np.zeros((dirs.shape[0], n_coeffs), dtype=np.float64)

    # l=0
    basis[:, 0] = SH_C0

    if degree > 0:
        basis[:, 1] = -SH_C1 * y
        basis[:, 2] = SH_C1 * z
        basis[:, 3] = -SH_C1 * x

    if degree > 1:
        xx, yy, zz = x * x, y * y, z * z
        basis[:, 4] = SH_C2[0] * x * y
        basis[:, 5] = SH_C2[1] * y * z
        basis[:, 6] = SH_C2[2] * (2.0 * zz - xx - yy)
        basis[:, 7] = SH_C2[3] * x * z
        basis[:, 8] = SH_C2[4] * (xx - yy)

    if degree > 2:
        basis[:, 9] = SH_C3[0] * y * (3.0 * xx - yy)
        basis[:, 10] = SH_C3[1] * x * y * z
        basis[:, 11] = SH_C3[2] * y * (4.0 * zz - xx - yy)
        basis[:, 12] = SH_C3[3] * z * (2.0 * zz - 3.0 * xx - 3.0 * yy)
        basis[:, 13] = SH_C3[4] * x * (4.0 * zz - xx - yy)
        basis[:, 14] = SH_C3[5] * z * (xx - yy)
        basis[:, 15] = SH_C3[6] * x * (xx - 3.0 * yy)

    return basis.reshape(*orig_shape, n_coeffs)


def decode_base_color(colors: np.ndarray) -> np.ndarray:
    """Decode byte base colors into SH coefficient 0.

    The implicit half-domain offset (``value/255 - 0.5``) pairs with the
    +0.5 bias in :func:`shade`, so a cell with no directional terms shades
    to exactly ``value/255``.
    """
    return np.asarray(colors, dtype=np.float32) * np.float32(BYTE_INV) - np.float32(0.5)


def shade(directions: np.ndarray, harmonics: np.ndarray, degree: int) -> np.ndarray:
    """Evaluate view-dependent cell color.

    Args:
        directions: Unit view directions, shape (..., 3)
        harmonics: Per-cell coefficients, shape (..., n, 3) with n >= (degree+1)^2.
            Row 0 is the decoded base color.
        degree: SH degree to shade with

    Returns:
        Non-negative RGB, shape (..., 3)
    """
    n_coeffs = sh_dim(degree)
    harmonics = np.asarray(harmonics, dtype=np.float64)
    if harmonics.shape[-2] < n_coeffs:
        raise ValueError(
            f"harmonics hold {harmonics.shape[-2]} coefficients, "
            f"degree {degree} needs {n_coeffs}"
        )

    basis = eval_sh_basis(directions, degree)
    # coefficient 0 is weighted by 1, not SH_C0
    basis[..., 0] = 1.0

    color = 0.5 + np.einsum('...s,...sc->...c', basis, harmonics[..., :n_coeffs, :])
    return np.maximum(color, 0.0)


@njit(cache=True)
def _eval_sh_basis_into(x: float, y: float, z: float, degree: int, basis: np.ndarray):
    """Fill ``basis`` with the shading basis for one direction.

    basis[0] is 1 (implicit offset of the packed base color); the remaining
    entries are the normalized real SH values.
    """
    basis[0] = 1.0

    if degree > 0:
        basis[1] = -SH_C1 * y
        basis[2] = SH_C1 * z
        basis[3] = -SH_C1 * x

    if degree > 1:
        xx = x * x
        yy = y * y
        zz = z * z
        basis[4] = SH_C2[0] * x * y
        basis[5] = SH_C2[1] * y * z
        basis[6] = SH_C2[2] * (2.0 * zz - xx - yy)
        basis[7] = SH_C2[3] * x * z
        basis[8] = SH_C2[4] * (xx - yy)

        if degree > 2:
            basis[9] = SH_C3[0] * y * (3.0 * xx - yy)
            basis[10] = SH_C3[1] * x * y * z
            basis[11] = SH_C3[2] * y * (4.0 * zz - xx - yy)
            basis[12] = SH_C3[3] * z * (2.0 * zz - 3.0 * xx - 3.0 * yy)
            basis[13] = SH_C3[4] * x * (4.0 * zz - xx - yy)
            basis[14] = SH_C3[5] * z * (xx - yy)
            basis[15] = SH_C3[6] * x * (xx - 3.0 * yy)


@njit(cache=True)
def _shade_cell(harmonics: np.ndarray, cell: int, basis: np.ndarray, n_coeffs: int,
                out: np.ndarray):
    """Shade one cell into ``out`` (3,) given a precomputed basis."""
    for c in range(3):
        value = 0.5
        for k in range(n_coeffs):
            value += harmonics[cell, k, c] * basis[k]
        out[c] = max(value, 0.0)
