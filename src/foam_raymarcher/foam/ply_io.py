"""Foam PLY reading and writing.

Foams are exchanged as binary little-endian PLY files with two elements:

    element vertex N
        property float x / y / z
        property uchar red / green / blue
        property float density
        property float color_sh_0 ... color_sh_{3k-1}   (term-major, then RGB)
        property uint adjacency_offset
    element adjacency M
        property uint adjacency

An optional bounding box travels in header comments:

    comment boundingbox_center x y z
    comment boundingbox_size x y z
    comment boundingbox_rotation x y z w
"""

import re
import warnings
import numpy as np
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .store import FoamStore
from ..bounds.box import OrientedBox
from ..shading.spherical_harmonics import get_sh_order

PLY_MAGIC = "ply"
PLY_FORMAT = "format binary_little_endian 1.0"
MAX_HEADER_LINES = 256

# PLY scalar type names (both spellings) to little-endian numpy types
PLY_TYPES = {
    "char": "i1", "int8": "i1",
    "uchar": "u1", "uint8": "u1",
    "short": "<i2", "int16": "<i2",
    "ushort": "<u2", "uint16": "<u2",
    "int": "<i4", "int32": "<i4",
    "uint": "<u4", "uint32": "<u4",
    "float": "<f4", "float32": "<f4",
    "double": "<f8", "float64": "<f8",
}

_SH_PROPERTY = re.compile(r"^color_sh_(\d+)$")


def _parse_header(stream) -> Tuple[List[Tuple[str, int, List[Tuple[str, str]]]], Dict[str, List[float]]]:
    """Read the ASCII header, leaving ``stream`` at the start of the binary body.

    Returns:
        Tuple of (elements as (name, count, [(property, numpy type)]),
        bounding-box comments keyed by name)
    """
    def read_line() -> str:
        line = stream.readline()
        if not line:
            raise ValueError("Unexpected end of file inside PLY header")
        return line.decode("ascii", errors="replace").rstrip("\r\n")

    if read_line().strip() != PLY_MAGIC:
        raise ValueError("Not a PLY file (magic number mismatch)")

    fmt = read_line().strip()
    if fmt != PLY_FORMAT:
        raise ValueError(f"Unsupported PLY format '{fmt}'; expected binary little endian 1.0")

    elements = []
    comments = {}

    for _ in range(MAX_HEADER_LINES):
        cols = read_line().split()
        if not cols:
            continue

        kind = cols[0]
        if kind == "element":
            if len(cols) != 3:
                raise ValueError(f"Malformed element line: {' '.join(cols)}")
            elements.append((cols[1], int(cols[2]), []))
        elif kind == "property":
            if not elements:
                raise ValueError(f"Property before any element: {' '.join(cols)}")
            if cols[1] == "list":
                raise ValueError(f"List properties are not supported: {' '.join(cols)}")
            if cols[1] not in PLY_TYPES:
                raise ValueError(f"Unknown PLY property type '{cols[1]}'")
            elements[-1][2].append((cols[2], PLY_TYPES[cols[1]]))
        elif kind == "comment":
            if len(cols) > 2 and cols[1].startswith("boundingbox_"):
                try:
                    comments[cols[1]] = [float(c) for c in cols[2:]]
                except ValueError:
                    warnings.warn(f"Ignoring malformed header comment: {' '.join(cols)}", UserWarning)
        elif kind == "obj_info":
            continue
        elif kind == "end_header":
            return elements, comments
        else:
            warnings.warn(f"Skipping unknown PLY header line: {' '.join(cols)}", UserWarning)

    raise ValueError(f"PLY header longer than {MAX_HEADER_LINES} lines")


def _box_from_comments(comments: Dict[str, List[float]]) -> Optional[OrientedBox]:
    """Bounding box from header comments; size/rotation default to unit/identity."""
    center = comments.get("boundingbox_center")
    if center is None or len(center) < 3:
        return None

    size = comments.get("boundingbox_size", [0.0, 0.0, 0.0])[:3]
    if len(size) < 3 or not np.any(size):
        size = [1.0, 1.0, 1.0]
    elif min(size) <= 0:
        warnings.warn(f"Ignoring bounding box with non-positive size {size}", UserWarning)
        return None

    rotation = comments.get("boundingbox_rotation", [0.0, 0.0, 0.0, 0.0])[:4]
    if len(rotation) < 4 or not np.any(rotation):
        rotation = [0.0, 0.0, 0.0, 1.0]

    return OrientedBox(center=center[:3], size=size, rotation=rotation)


def load_foam_ply(path: Union[str, Path]) -> Tuple[FoamStore, Optional[OrientedBox]]:
    """Load a foam from a binary little-endian PLY file.

    Args:
        path: Path to the .ply file

    Returns:
        Tuple of (validated FoamStore, OrientedBox or None if the header
        carries no bounding box)

    Raises:
        ValueError: If the file is not a foam PLY this loader understands
    """
    path = Path(path)
    with open(path, "rb") as stream:
        elements, comments = _parse_header(stream)

        data = {}
        for name, count, properties in elements:
            dtype = np.dtype(properties)
            raw = stream.read(dtype.itemsize * count)
            if len(raw) != dtype.itemsize * count:
                raise ValueError(f"Incomplete binary data for element '{name}' in {path}")
            data[name] = np.frombuffer(raw, dtype=dtype, count=count)

    if "vertex" not in data:
        raise ValueError(f"{path} has no 'vertex' element")
    if "adjacency" not in data:
        raise ValueError(f"{path} has no 'adjacency' element")

    vertex = data["vertex"]
    required = ("x", "y", "z", "red", "green", "blue", "density", "adjacency_offset")
    missing = [p for p in required if p not in vertex.dtype.names]
    if missing:
        raise ValueError(f"{path} vertex element is missing properties: {missing}")
    if "adjacency" not in data["adjacency"].dtype.names:
        raise ValueError(f"{path} adjacency element has no 'adjacency' property")

    sh_indices = sorted(
        int(m.group(1)) for m in map(_SH_PROPERTY.match, vertex.dtype.names) if m
    )
    if sh_indices != list(range(len(sh_indices))) or len(sh_indices) % 3 != 0:
        raise ValueError(f"{path} has non-contiguous color_sh_* properties")
    n_rest = len(sh_indices) // 3
    # Raises for counts that are not a full SH band set
    get_sh_order(n_rest + 1)

    n_cells = vertex.shape[0]
    sh_rest = np.zeros((n_cells, n_rest, 3), dtype=np.float32)
    for i in sh_indices:
        sh_rest[:, i // 3, i % 3] = vertex[f"color_sh_{i}"]

    store = FoamStore(
        positions=np.stack([vertex["x"], vertex["y"], vertex["z"]], axis=-1),
        adjacency_offset=vertex["adjacency_offset"],
        adjacency=data["adjacency"]["adjacency"],
        density=vertex["density"],
        colors=np.stack([vertex["red"], vertex["green"], vertex["blue"]], axis=-1),
        sh_rest=sh_rest,
    )
    store.validate()

    return store, _box_from_comments(comments)


def save_foam_ply(
    path: Union[str, Path],
    store: FoamStore,
    box: Optional[OrientedBox] = None
) -> Path:
    """Write a foam in the layout read by :func:`load_foam_ply`.

    Args:
        path: Output .ply path
        store: Foam to write
        box: Optional bounding box stored in header comments

    Returns:
        Path to the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    n_cells = store.cell_count
    n_rest = store.sh_rest.shape[1]

    vertex_fields = [
        ("x", "<f4"), ("y", "<f4"), ("z", "<f4"),
        ("red", "u1"), ("green", "u1"), ("blue", "u1"),
        ("density", "<f4"),
    ]
    vertex_fields += [(f"color_sh_{i}", "<f4") for i in range(3 * n_rest)]
    vertex_fields.append(("adjacency_offset", "<u4"))

    vertex = np.zeros(n_cells, dtype=vertex_fields)
    for axis, name in enumerate("xyz"):
        vertex[name] = store.positions[:, axis]
    for channel, name in enumerate(("red", "green", "blue")):
        vertex[name] = store.colors[:, channel]
    vertex["density"] = store.density
    flat_sh = store.sh_rest.reshape(n_cells, -1)
    for i in range(3 * n_rest):
        vertex[f"color_sh_{i}"] = flat_sh[:, i]
    vertex["adjacency_offset"] = store.adjacency_offset

    adjacency = np.zeros(store.face_count, dtype=[("adjacency", "<u4")])
    adjacency["adjacency"] = store.adjacency

    type_names = {"<f4": "float", "u1": "uchar", "<u4": "uint"}
    lines = [PLY_MAGIC, PLY_FORMAT]
    if box is not None:
        lines.append("comment boundingbox_center " + " ".join(repr(float(v)) for v in box.center))
        lines.append("comment boundingbox_size " + " ".join(repr(float(v)) for v in box.size))
        lines.append("comment boundingbox_rotation " + " ".join(repr(float(v)) for v in box.rotation))
    lines.append(f"element vertex {n_cells}")
    lines += [f"property {type_names[t]} {name}" for name, t in vertex_fields]
    lines.append(f"element adjacency {store.face_count}")
    lines.append("property uint adjacency")
    lines.append("end_header")

    with open(path, "wb") as f:
        f.write(("\n".join(lines) + "\n").encode("ascii"))
        f.write(vertex.tobytes())
        f.write(adjacency.tobytes())

    return path
