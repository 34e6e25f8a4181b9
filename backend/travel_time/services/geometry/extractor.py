"""
Centroid extraction from classified geometry.

Each encoding has one precise decoder. WKT and standard WKB accept only
point geometries and fail otherwise. Columnar blobs and unrecognized
binary fall back to `positional_scan`, a best-effort search for the first
8-byte-aligned pair of doubles that lies in coordinate range. The method
actually used is reported by `extract_with_method` so callers can tell a
precise decode from the degraded scan.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from travel_time.core.exceptions import GeometryDecodeException
from travel_time.core.metrics import record_extraction
from travel_time.services.geometry.classifier import (
    COLUMNAR_MIN_SIZE,
    COLUMNAR_TYPE_OFFSET,
    MIN_BINARY_SIZE,
    WKB_BIG_ENDIAN,
    WKB_LITTLE_ENDIAN,
    WKB_SRID_FLAG,
    WKB_TYPE_MASK,
)
from travel_time.services.geometry.codec import Buffer, CoordinateCodec
from travel_time.services.geometry.types import ClassifiedGeometry, Coordinate, GeometryEncoding

logger = logging.getLogger(__name__)

POINT_TYPE = 1
COLUMNAR_COORDS_OFFSET = 16
SCAN_START_OFFSET = 8
SCAN_STEP = 8
SCAN_WINDOW = 16

# Optional EWKT "SRID=4326;" prefix, then the geometry tag up to "("
_WKT_TAG = re.compile(r"^\s*(?:SRID=\d+\s*;\s*)?([A-Za-z]+(?:\s+(?:Z|M|ZM))?)\s*\($", re.IGNORECASE)


class ExtractionMethod(str, Enum):
    WKT_POINT = "wkt_point"
    WKB_POINT = "wkb_point"
    COLUMNAR_POINT = "columnar_point"
    POSITIONAL_SCAN = "positional_scan"


@dataclass(frozen=True)
class Extraction:
    coordinate: Coordinate
    method: ExtractionMethod


def _validated(lat: float, lon: float, source: str) -> Coordinate:
    if not Coordinate.is_valid(lat, lon):
        raise GeometryDecodeException(
            message=f"{source} coordinate out of range: lat={lat}, lon={lon}",
            details={"lat": lat, "lon": lon},
        )
    return Coordinate(lat=lat, lon=lon)


# =============================================================================
# Decoders
# =============================================================================

def extract_wkt_point(text: str) -> Coordinate:
    """
    Parse `POINT(x y)`; x is longitude, y is latitude.

    Only the first parenthesised group is read, so `POINT Z (x y z)` yields
    its x/y. Any other geometry tag fails.
    """
    open_idx = text.find("(")
    close_idx = text.find(")", open_idx + 1) if open_idx >= 0 else -1
    if open_idx < 0 or close_idx < 0:
        raise GeometryDecodeException(
            message="WKT has no coordinate group",
            details={"wkt": text[:64]},
        )

    tag = _WKT_TAG.match(text[: open_idx + 1])
    if not tag or tag.group(1).split()[0].upper() != "POINT":
        raise GeometryDecodeException(
            message="Only WKT POINT geometries are supported",
            details={"wkt": text[:64]},
        )

    tokens = text[open_idx + 1 : close_idx].split()
    if len(tokens) < 2:
        raise GeometryDecodeException(
            message="WKT POINT needs two coordinates",
            details={"wkt": text[:64]},
        )
    try:
        lon = float(tokens[0])
        lat = float(tokens[1])
    except ValueError:
        raise GeometryDecodeException(
            message="WKT POINT coordinates are not numbers",
            details={"wkt": text[:64]},
        )
    return _validated(lat, lon, "WKT")


def extract_wkb_point(data: Buffer) -> Coordinate:
    """Decode a standard (or EWKB) point, honouring its byte order."""
    if len(data) < MIN_BINARY_SIZE:
        raise GeometryDecodeException(message=f"WKB too short: {len(data)} bytes")
    if data[0] not in (WKB_BIG_ENDIAN, WKB_LITTLE_ENDIAN):
        raise GeometryDecodeException(
            message=f"Invalid WKB byte-order marker: 0x{data[0]:02x}",
            details={"byte_order": data[0]},
        )

    little_endian = data[0] == WKB_LITTLE_ENDIAN
    raw_type = CoordinateCodec.read_uint32(data, 1, little_endian)
    geom_type = raw_type & WKB_TYPE_MASK
    if geom_type != POINT_TYPE:
        raise GeometryDecodeException(
            message=f"Only WKB points are supported, got type {geom_type}",
            details={"geometry_type": geom_type},
        )

    offset = 5
    if raw_type & WKB_SRID_FLAG:
        offset += 4
    if offset + 16 > len(data):
        raise GeometryDecodeException(message=f"WKB point truncated: {len(data)} bytes")

    lon, lat = CoordinateCodec.read_pair(data, offset, little_endian)
    return _validated(lat, lon, "WKB")


def extract_columnar_point(data: Buffer) -> Optional[Coordinate]:
    """
    Decode the columnar point layout (LE type at 12, lon/lat at 16/24).

    Returns None when the blob is not a point or its values are out of
    range, leaving the caller to scan.
    """
    if len(data) < COLUMNAR_MIN_SIZE:
        return None
    if CoordinateCodec.read_uint32(data, COLUMNAR_TYPE_OFFSET, True) != POINT_TYPE:
        return None
    lon, lat = CoordinateCodec.read_pair(data, COLUMNAR_COORDS_OFFSET, True)
    if not Coordinate.is_valid(lat, lon):
        return None
    return Coordinate(lat=lat, lon=lon)


def positional_scan(data: Buffer) -> Optional[Coordinate]:
    """
    Degraded-mode search over 8-byte-aligned little-endian double pairs.

    Starts at offset 8 and returns the first (x, y) window with x a valid
    longitude and y a valid latitude, or None.
    """
    offset = SCAN_START_OFFSET
    while offset + SCAN_WINDOW <= len(data):
        x, y = CoordinateCodec.read_pair(data, offset, True)
        if Coordinate.is_valid(y, x):
            return Coordinate(lat=y, lon=x)
        offset += SCAN_STEP
    return None


def _scan_or_fail(data: Buffer, encoding: GeometryEncoding) -> Extraction:
    coordinate = positional_scan(data)
    if coordinate is None:
        raise GeometryDecodeException(
            message="No valid coordinate found in binary geometry",
            details={"encoding": encoding.value, "size": len(data)},
        )
    logger.info(f"Centroid recovered by positional scan ({encoding.value}, {len(data)} bytes)")
    return Extraction(coordinate, ExtractionMethod.POSITIONAL_SCAN)


# =============================================================================
# Entry points
# =============================================================================

def extract_with_method(classified: ClassifiedGeometry) -> Extraction:
    """Extract one coordinate and report which decoder produced it."""
    encoding = classified.encoding

    if encoding == GeometryEncoding.WKT:
        result = Extraction(extract_wkt_point(classified.as_text()), ExtractionMethod.WKT_POINT)
    elif encoding == GeometryEncoding.STANDARD_WKB:
        result = Extraction(extract_wkb_point(classified.data_view), ExtractionMethod.WKB_POINT)
    elif encoding == GeometryEncoding.INTERNAL_COLUMNAR_BLOB:
        coordinate = extract_columnar_point(classified.data_view)
        if coordinate is not None:
            result = Extraction(coordinate, ExtractionMethod.COLUMNAR_POINT)
        else:
            result = _scan_or_fail(classified.data_view, encoding)
    else:
        data = classified.data_view
        if isinstance(data, str):
            data = data.encode("utf-8")
        result = _scan_or_fail(data, encoding)

    record_extraction(result.method.value)
    return result


def extract(classified: ClassifiedGeometry) -> Coordinate:
    """Extract one representative coordinate; raises GeometryDecodeException."""
    return extract_with_method(classified).coordinate


class CentroidExtractor:
    """Object facade over `extract` for injection into the orchestrator."""

    def extract(self, classified: ClassifiedGeometry) -> Coordinate:
        return extract(classified)

    def extract_with_method(self, classified: ClassifiedGeometry) -> Extraction:
        return extract_with_method(classified)
