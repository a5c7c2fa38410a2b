"""Binary PCD files of coloured 3D points."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

_RECORD = struct.Struct("<fffI")
_ALPHA = 0xFF000000


@dataclass(frozen=True)
class ColoredPoint:
    """A 3D point with an 8-bit RGB colour."""

    x: float
    y: float
    z: float
    r: int = 0
    g: int = 0
    b: int = 0

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 255:
                raise ValueError(f"colour channel {name} must be an int in 0..255, got {value!r}")

    @property
    def packed_rgb(self) -> int:
        return _ALPHA | (self.r << 16) | (self.g << 8) | self.b


def _header(count: int) -> bytes:
    lines = [
        "# .PCD v0.7 - Point Cloud Data file format",
        "VERSION 0.7",
        "FIELDS x y z rgb",
        "SIZE 4 4 4 4",
        "TYPE F F F F",
        "COUNT 1 1 1 1",
        f"WIDTH {count}",
        "HEIGHT 1",
        "VIEWPOINT 0 0 0 1 0 0 0",
        f"POINTS {count}",
        "DATA binary",
    ]
    return ("\n".join(lines) + "\n").encode("ascii")


def write_pcd_binary(path: str | os.PathLike, points: Iterable[ColoredPoint]) -> None:
    """Write points as an XYZRGB binary PCD file."""
    cloud = list(points)
    body = b"".join(_RECORD.pack(p.x, p.y, p.z, p.packed_rgb) for p in cloud)
    Path(path).write_bytes(_header(len(cloud)) + body)


def read_pcd_binary(path: str | os.PathLike) -> list[ColoredPoint]:
    """Read an XYZRGB binary PCD file written by :func:`write_pcd_binary`."""
    fields: dict[str, list[str]] = {}
    with open(path, "rb") as stream:
        while True:
            raw = stream.readline()
            if not raw:
                raise ValueError("PCD header has no DATA line")
            line = raw.decode("ascii", errors="replace").strip()
            if not line or line.startswith("#"):
                continue
            key, *values = line.split()
            fields[key.upper()] = values
            if key.upper() == "DATA":
                break
        body = stream.read()

    if fields["DATA"] != ["binary"]:
        raise ValueError(f"unsupported PCD data encoding: {' '.join(fields['DATA'])}")
    if fields.get("FIELDS") != ["x", "y", "z", "rgb"]:
        raise ValueError("PCD fields must be 'x y z rgb'")
    if fields.get("SIZE", ["4"] * 4) != ["4"] * 4:
        raise ValueError("PCD field sizes must all be 4")
    try:
        count = int(fields["POINTS"][0])
    except (KeyError, IndexError, ValueError) as exc:
        raise ValueError("PCD header has no valid POINTS entry") from exc

    needed = count * _RECORD.size
    if len(body) < needed:
        raise ValueError(f"PCD body holds {len(body)} bytes, expected {needed}")

    return [
        ColoredPoint(x, y, z, (rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF)
        for x, y, z, rgb in _RECORD.iter_unpack(body[:needed])
    ]