"""
WKB writers for route output and a linestring reader.

Route output is little-endian: byte order 0x01, uint32 type, then the
type-specific payload with longitude before latitude.
"""
from typing import Iterable, Sequence, Union

from travel_time.core.exceptions import GeometryDecodeException
from travel_time.services.geometry.codec import Buffer, CoordinateCodec
from travel_time.services.geometry.types import Coordinate, RoutePoint

WKB_POINT = 1
WKB_LINESTRING = 2
WKB_POLYGON = 3

PointLike = Union[RoutePoint, Coordinate]


def _header(geom_type: int, little_endian: bool = True) -> bytes:
    marker = b"\x01" if little_endian else b"\x00"
    return marker + CoordinateCodec.write_uint32(geom_type, little_endian)


def _points(points: Iterable[PointLike]) -> bytes:
    return b"".join(CoordinateCodec.write_pair(p.lon, p.lat) for p in points)


def encode_linestring(points: Sequence[PointLike]) -> bytes:
    """
    Encode an ordered path as a little-endian WKB linestring.

    An empty path yields b"" rather than a zero-point linestring.
    """
    if len(points) <= 0:
        return b""
    return _header(WKB_LINESTRING) + CoordinateCodec.write_uint32(len(points)) + _points(points)


def encode_point(coordinate: PointLike, little_endian: bool = True) -> bytes:
    return _header(WKB_POINT, little_endian) + CoordinateCodec.write_pair(
        coordinate.lon, coordinate.lat, little_endian
    )


def encode_polygon(rings: Sequence[Sequence[PointLike]]) -> bytes:
    """Encode polygon rings (outer first). Empty input yields b""."""
    rings = [ring for ring in rings if len(ring) > 0]
    if not rings:
        return b""
    body = CoordinateCodec.write_uint32(len(rings))
    for ring in rings:
        body += CoordinateCodec.write_uint32(len(ring)) + _points(ring)
    return _header(WKB_POLYGON) + body


def decode_linestring(data: Buffer) -> list[RoutePoint]:
    """Read a WKB linestring in either byte order. b"" reads as no points."""
    if len(data) == 0:
        return []
    if len(data) < 9 or data[0] not in (0, 1):
        raise GeometryDecodeException(message="Not a WKB linestring header")

    little_endian = data[0] == 1
    geom_type = CoordinateCodec.read_uint32(data, 1, little_endian) & 0x0FFFFFFF
    if geom_type != WKB_LINESTRING:
        raise GeometryDecodeException(
            message=f"Expected WKB linestring, got type {geom_type}",
            details={"geometry_type": geom_type},
        )

    count = CoordinateCodec.read_uint32(data, 5, little_endian)
    if 9 + count * 16 > len(data):
        raise GeometryDecodeException(
            message=f"WKB linestring declares {count} points but holds {(len(data) - 9) // 16}",
        )

    points = []
    for i in range(count):
        lon, lat = CoordinateCodec.read_pair(data, 9 + i * 16, little_endian)
        points.append(RoutePoint(lat=lat, lon=lon))
    return points


def decode_polygon_ring(data: Buffer) -> list[RoutePoint]:
    """Outer ring of a little-endian WKB polygon written by `encode_polygon`."""
    if len(data) == 0:
        return []
    if len(data) < 13 or CoordinateCodec.read_uint32(data, 1) != WKB_POLYGON:
        raise GeometryDecodeException(message="Not a WKB polygon")
    count = CoordinateCodec.read_uint32(data, 9)
    return [
        RoutePoint(lat=lat, lon=lon)
        for lon, lat in (CoordinateCodec.read_pair(data, 13 + i * 16) for i in range(count))
    ]


class RouteGeometryEncoder:
    """Encodes route paths for callers that take an encoder instance."""

    def encode(self, points: Sequence[PointLike]) -> bytes:
        return encode_linestring(points)

    @staticmethod
    def to_hex(data: bytes) -> str:
        return data.hex().upper()
