"""Point cloud readers (.pcd, .ply, raw .bin) and output file naming."""

from __future__ import annotations

import struct
from pathlib import Path

import numpy as np

_MAX_RAW_FLOATS = 1_000_000

_PCD_KINDS = {"F": "f", "I": "i", "U": "u"}

_PLY_TYPES = {
    "char": "i1",
    "int8": "i1",
    "uchar": "u1",
    "uint8": "u1",
    "short": "i2",
    "int16": "i2",
    "ushort": "u2",
    "uint16": "u2",
    "int": "i4",
    "int32": "i4",
    "uint": "u4",
    "uint32": "u4",
    "float": "f4",
    "float32": "f4",
    "double": "f8",
    "float64": "f8",
}


def _xyz_from_quads(data: bytes, num_points: int) -> np.ndarray:
    quads = np.frombuffer(data, dtype=np.float32, count=num_points * 4).reshape(num_points, 4)
    return quads[:, :3].copy()


def read_bin(path) -> np.ndarray:
    """Read a raw file of (x, y, z, intensity) float32 records; returns (N, 3) points."""
    data = Path(path).read_bytes()
    return _xyz_from_quads(data, len(data) // 16)


def load_cloud(path) -> np.ndarray:
    """Read at most one million raw floats as (x, y, z, intensity) records."""
    with open(path, "rb") as fh:
        data = fh.read(_MAX_RAW_FLOATS * 4)
    return _xyz_from_quads(data, (len(data) // 4) // 4)


def _lzf_decompress(data: bytes, expected_size: int) -> bytes:
    out = bytearray()
    pos = 0
    try:
        while pos < len(data):
            ctrl = data[pos]
            pos += 1
            if ctrl < 32:
                length = ctrl + 1
                if pos + length > len(data):
                    raise ValueError("truncated LZF literal run")
                out += data[pos : pos + length]
                pos += length
                continue
            length = ctrl >> 5
            ref = len(out) - ((ctrl & 0x1F) << 8) - 1
            if length == 7:
                length += data[pos]
                pos += 1
            ref -= data[pos]
            pos += 1
            length += 2
            if ref < 0:
                raise ValueError("invalid LZF back reference")
            if ref + length <= len(out):
                out += out[ref : ref + length]
            else:
                for offset in range(length):
                    out.append(out[ref + offset])
    except IndexError as exc:
        raise ValueError("truncated LZF stream") from exc
    if len(out) != expected_size:
        raise ValueError("LZF stream does not match the declared size")
    return bytes(out)


def _read_pcd(path) -> np.ndarray:
    raw = Path(path).read_bytes()
    header: dict[str, list[str]] = {}
    pos = 0
    while "DATA" not in header:
        end = raw.find(b"\n", pos)
        if end < 0:
            raise ValueError(f"{path}: PCD header has no DATA line")
        line = raw[pos:end].decode("ascii", errors="replace").strip()
        pos = end + 1
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition(" ")
        header[key.upper()] = value.split()

    try:
        names = header["FIELDS"]
        sizes = [int(s) for s in header["SIZE"]]
        kinds = [_PCD_KINDS[t.upper()] for t in header["TYPE"]]
    except KeyError as exc:
        raise ValueError(f"{path}: incomplete PCD header") from exc
    counts = [int(c) for c in header.get("COUNT", ["1"] * len(names))]
    if not len(names) == len(sizes) == len(kinds) == len(counts):
        raise ValueError(f"{path}: inconsistent PCD field description")
    if "POINTS" in header:
        num_points = int(header["POINTS"][0])
    else:
        num_points = int(header["WIDTH"][0]) * int(header["HEIGHT"][0])
    missing = {"x", "y", "z"} - set(names)
    if missing:
        raise ValueError(f"{path}: PCD file lacks fields {sorted(missing)}")
    axes = [names.index(axis) for axis in ("x", "y", "z")]
    mode = header["DATA"][0].lower()

    if mode == "ascii":
        starts = np.cumsum([0, *counts[:-1]])
        rows = [line.split() for line in raw[pos:].decode("ascii").splitlines() if line.strip()]
        rows = rows[:num_points]
        if len(rows) < num_points:
            raise ValueError(f"{path}: PCD file holds fewer points than declared")
        cols = [starts[a] for a in axes]
        return np.array([[float(row[c]) for c in cols] for row in rows], dtype=np.float32).reshape(
            -1, 3
        )

    if mode == "binary":
        dtype = np.dtype(
            [
                (f"f{i}", f"<{kind}{size}", (count,) if count > 1 else ())
                for i, (kind, size, count) in enumerate(zip(kinds, sizes, counts))
            ]
        )
        if len(raw) - pos < dtype.itemsize * num_points:
            raise ValueError(f"{path}: PCD file holds fewer points than declared")
        records = np.frombuffer(raw, dtype=dtype, count=num_points, offset=pos)
        columns = []
        for a in axes:
            column = records[f"f{a}"]
            columns.append(column[:, 0] if column.ndim > 1 else column)
        return np.stack(columns, axis=1).astype(np.float32).reshape(-1, 3)

    if mode == "binary_compressed":
        if len(raw) - pos < 8:
            raise ValueError(f"{path}: truncated compressed PCD data")
        compressed_size, uncompressed_size = struct.unpack_from("<II", raw, pos)
        payload = raw[pos + 8 : pos + 8 + compressed_size]
        data = _lzf_decompress(payload, uncompressed_size)
        offsets = np.cumsum(
            [0, *(size * count * num_points for size, count in zip(sizes, counts))]
        )
        columns = []
        for a in axes:
            block = np.frombuffer(
                data,
                dtype=f"<{kinds[a]}{sizes[a]}",
                count=num_points * counts[a],
                offset=int(offsets[a]),
            ).reshape(num_points, counts[a])
            columns.append(block[:, 0])
        return np.stack(columns, axis=1).astype(np.float32).reshape(-1, 3)

    raise ValueError(f"{path}: unknown PCD data mode {mode!r}")


def _read_ply(path) -> np.ndarray:
    raw = Path(path).read_bytes()
    marker = raw.find(b"end_header")
    if not raw.startswith(b"ply") or marker < 0:
        raise ValueError(f"{path}: not a PLY file")
    body_start = raw.find(b"\n", marker) + 1
    lines = raw[:marker].decode("ascii", errors="replace").splitlines()

    fmt = None
    elements: list[tuple[str, int, list[tuple]]] = []
    for line in lines[1:]:
        words = line.split()
        if not words or words[0] in ("comment", "obj_info"):
            continue
        if words[0] == "format":
            fmt = words[1]
        elif words[0] == "element":
            elements.append((words[1], int(words[2]), []))
        elif words[0] == "property":
            if not elements:
                raise ValueError(f"{path}: property outside of an element")
            elements[-1][2].append(tuple(words[1:]))
    if fmt not in ("ascii", "binary_little_endian", "binary_big_endian"):
        raise ValueError(f"{path}: unsupported PLY format {fmt!r}")

    names = [e[0] for e in elements]
    if "vertex" not in names:
        raise ValueError(f"{path}: PLY file has no vertex element")
    vertex_at = names.index("vertex")
    _, num_vertices, vertex_props = elements[vertex_at]
    if any(prop[0] == "list" for prop in vertex_props):
        raise ValueError(f"{path}: list properties on vertices are not supported")
    prop_names = [prop[1] for prop in vertex_props]
    missing = {"x", "y", "z"} - set(prop_names)
    if missing:
        raise ValueError(f"{path}: PLY vertices lack {sorted(missing)}")
    axes = [prop_names.index(axis) for axis in ("x", "y", "z")]

    if fmt == "ascii":
        rows = [line for line in raw[body_start:].decode("ascii").splitlines() if line.strip()]
        skip = sum(e[1] for e in elements[:vertex_at])
        vertex_rows = [line.split() for line in rows[skip : skip + num_vertices]]
        if len(vertex_rows) < num_vertices:
            raise ValueError(f"{path}: PLY file holds fewer vertices than declared")
        return np.array(
            [[float(row[a]) for a in axes] for row in vertex_rows], dtype=np.float32
        ).reshape(-1, 3)

    order = "<" if fmt == "binary_little_endian" else ">"
    offset = body_start
    for name, count, props in elements[:vertex_at]:
        if any(prop[0] == "list" for prop in props):
            raise ValueError(f"{path}: cannot skip list properties of element {name!r}")
        offset += count * sum(np.dtype(_PLY_TYPES[prop[0]]).itemsize for prop in props)
    try:
        dtype = np.dtype(
            [(f"p{i}", order + _PLY_TYPES[prop[0]]) for i, prop in enumerate(vertex_props)]
        )
    except KeyError as exc:
        raise ValueError(f"{path}: unknown PLY property type {exc}") from exc
    if len(raw) - offset < dtype.itemsize * num_vertices:
        raise ValueError(f"{path}: PLY file holds fewer vertices than declared")
    records = np.frombuffer(raw, dtype=dtype, count=num_vertices, offset=offset)
    return np.stack([records[f"p{a}"] for a in axes], axis=1).astype(np.float32).reshape(-1, 3)


def load_point_cloud(path) -> np.ndarray:
    """Load an (N, 3) float32 point cloud from a .pcd, .ply or .bin file."""
    extension = Path(path).suffix
    if extension == ".pcd":
        return _read_pcd(path)
    if extension == ".ply":
        return _read_ply(path)
    if extension == ".bin":
        return read_bin(path)
    raise ValueError(f"Unsupported file format: {extension}")


def finite_points(points) -> np.ndarray:
    """Drop every point that has a NaN or infinite coordinate."""
    xyz = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    return xyz[np.isfinite(xyz).all(axis=1)]


def output_filename(input_path, resolution: float, prefix: str = "") -> str:
    """Name of a downsampled cloud, e.g. prefix + '<stem>_res_1_00.pcd'."""
    resolution_text = f"{resolution:.2f}".replace(".", "_")
    return f"{prefix}{Path(input_path).stem}_res_{resolution_text}.pcd"


def warped_filename(src_path) -> str:
    """Path beside the source cloud where its warped copy is saved."""
    src = Path(src_path)
    return str(src.with_name(f"{src.stem}_warped.pcd"))