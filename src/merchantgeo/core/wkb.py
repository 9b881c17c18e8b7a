"""
Binary point codec (minimal WKB).

Coordinates are persisted as a fixed 21-byte Well-Known Binary point:

    byte 0      byte-order flag (1 = little endian, anything else = big endian)
    bytes 1-4   geometry type (1 = point)
    bytes 5-12  X / longitude, IEEE-754 double
    bytes 13-20 Y / latitude, IEEE-754 double

The empty point `(0, 0)` is written as "no value" (`None`), while decoding an
all-zero buffer still yields `(0, 0)`.
"""

from __future__ import annotations

import binascii
import struct

from merchantgeo.core.errors import DecodeError
from merchantgeo.core.geo import Point

WKB_POINT_SIZE = 21
WKB_POINT_TYPE = 1
LITTLE_ENDIAN = 1

_COORDS_LE = struct.Struct("<dd")
_COORDS_BE = struct.Struct(">dd")


def decode(value: bytes | bytearray | memoryview | str | None) -> Point:
    """Decode raw WKB bytes or a hex string into a `Point`.

    Raises:
        DecodeError: If the payload is not hex (for strings), has the wrong type,
            or is shorter than 21 bytes.
    """
    if value is None:
        return Point(lng=0.0, lat=0.0)

    if isinstance(value, str):
        try:
            wkb = binascii.unhexlify(value.strip())
        except (binascii.Error, ValueError) as exc:
            raise DecodeError(f"invalid WKB hex string: {exc}") from exc
    elif isinstance(value, (bytes, bytearray, memoryview)):
        wkb = bytes(value)
    else:
        raise DecodeError(f"cannot decode {type(value).__name__} into a point")

    if len(wkb) < WKB_POINT_SIZE:
        raise DecodeError(f"invalid WKB data length: {len(wkb)}")

    coords = _COORDS_LE if wkb[0] == LITTLE_ENDIAN else _COORDS_BE
    lng, lat = coords.unpack_from(wkb, 5)
    return Point(lng=lng, lat=lat)


def encode(point: Point) -> bytes | None:
    """Encode a point as little-endian WKB, or `None` for the empty point."""
    if point.is_empty():
        return None
    return struct.pack("<BI", LITTLE_ENDIAN, WKB_POINT_TYPE) + _COORDS_LE.pack(point.lng, point.lat)


def to_string(point: Point) -> str:
    """Return the `POINT(lng lat)` text form used in logs and exports."""
    return str(point)
