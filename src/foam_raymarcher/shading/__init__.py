"""View-dependent cell shading with real spherical harmonics."""

from .spherical_harmonics import (
    SH_C0,
    SH_C1,
    SH_C2,
    SH_C3,
    MAX_SH_DEGREE,
    eval_sh_basis,
    decode_base_color,
    shade,
    sh_dim,
    get_sh_order,
)

__all__ = [
    "SH_C0",
    "SH_C1",
    "SH_C2",
    "SH_C3",
    "MAX_SH_DEGREE",
    "eval_sh_basis",
    "decode_base_color",
    "shade",
    "sh_dim",
    "get_sh_order",
]
