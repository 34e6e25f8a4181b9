"""
Geometry encoding classifier.

Callers hand over geometry without saying how it is encoded: plain WKT
text, standards-compliant WKB, or a columnar engine's internal point blob.
`classify` decides from the declared storage kind and, for opaque binary,
from observable byte patterns. It is total: anything it cannot place is
UNRECOGNIZED and failure is left to the extractor.

The sniffing rules are separate predicates evaluated in SNIFF_RULES order.
The order matters: the columnar zero-run signature comes first, then the
generic WKB header, then the looser near-zero columnar header. A blob
whose header reads as WKB is WKB unless it starts with the full zero run.
"""
import logging
from dataclasses import replace
from typing import Callable, Optional, Union

from travel_time.core.metrics import record_classification
from travel_time.services.geometry.codec import Buffer, CoordinateCodec
from travel_time.services.geometry.types import (
    ClassifiedGeometry,
    DeclaredKind,
    GeometryEncoding,
    GeometryInput,
    GeometryPayload,
)

logger = logging.getLogger(__name__)

MIN_BINARY_SIZE = 21  # 1 byte order + 4 type + 2 doubles
COLUMNAR_MIN_SIZE = 32
COLUMNAR_HEADER_SIZE = 12
COLUMNAR_HEADER_MAX_BYTE = 16
COLUMNAR_TYPE_OFFSET = 12

WKB_BIG_ENDIAN = 0x00
WKB_LITTLE_ENDIAN = 0x01
WKB_TYPE_MASK = 0x0FFFFFFF
WKB_SRID_FLAG = 0x20000000
GEOMETRY_TYPE_RANGE = (1, 7)  # Point .. GeometryCollection

# Geometry-library aliases whose storage is standard binary WKB
STANDARD_WKB_ALIASES = frozenset({"WKB_BLOB"})


def _in_type_range(code: int) -> bool:
    return GEOMETRY_TYPE_RANGE[0] <= code <= GEOMETRY_TYPE_RANGE[1]


# =============================================================================
# Sniffing predicates
# =============================================================================

def is_too_short(data: Buffer) -> bool:
    """No binary encoding fits in fewer than 21 bytes."""
    return len(data) < MIN_BINARY_SIZE


def has_columnar_zero_signature(data: Buffer) -> bool:
    """At least 32 bytes whose first 12 bytes are all zero."""
    if len(data) < COLUMNAR_MIN_SIZE:
        return False
    return not any(data[:COLUMNAR_HEADER_SIZE])


def wkb_type_code(data: Buffer) -> Optional[int]:
    """
    Masked geometry type from a WKB header, or None if the byte-order
    marker is not 0x00/0x01 or the payload is too short.
    """
    if len(data) < 5 or data[0] not in (WKB_BIG_ENDIAN, WKB_LITTLE_ENDIAN):
        return None
    raw = CoordinateCodec.read_uint32(data, 1, little_endian=data[0] == WKB_LITTLE_ENDIAN)
    return raw & WKB_TYPE_MASK


def looks_like_standard_wkb(data: Buffer) -> bool:
    code = wkb_type_code(data)
    return code is not None and _in_type_range(code)


def looks_like_columnar_blob(data: Buffer) -> bool:
    """Near-zero 12-byte header followed by a little-endian type code."""
    if len(data) < COLUMNAR_MIN_SIZE:
        return False
    if any(b > COLUMNAR_HEADER_MAX_BYTE for b in data[:COLUMNAR_HEADER_SIZE]):
        return False
    code = CoordinateCodec.read_uint32(data, COLUMNAR_TYPE_OFFSET, little_endian=True)
    return _in_type_range(code)


SNIFF_RULES: tuple[tuple[Callable[[Buffer], bool], GeometryEncoding], ...] = (
    (is_too_short, GeometryEncoding.UNRECOGNIZED),
    (has_columnar_zero_signature, GeometryEncoding.INTERNAL_COLUMNAR_BLOB),
    (looks_like_standard_wkb, GeometryEncoding.STANDARD_WKB),
    (looks_like_columnar_blob, GeometryEncoding.INTERNAL_COLUMNAR_BLOB),
)


def sniff_binary(data: Buffer) -> GeometryEncoding:
    """Apply SNIFF_RULES in order; first match wins."""
    for predicate, encoding in SNIFF_RULES:
        if predicate(data):
            return encoding
    return GeometryEncoding.UNRECOGNIZED


# =============================================================================
# Classification
# =============================================================================

def _normalize_kind(kind) -> DeclaredKind:
    """Coerce a plain string or None to a DeclaredKind; unknown values are UNKNOWN."""
    if isinstance(kind, DeclaredKind):
        return kind
    try:
        return DeclaredKind(kind)
    except ValueError:
        return DeclaredKind.UNKNOWN


def _readonly_view(payload: Union[bytes, bytearray, memoryview]) -> memoryview:
    return memoryview(payload).cast("B").toreadonly()


def _classify(geometry: GeometryInput) -> ClassifiedGeometry:
    payload = geometry.payload
    kind = geometry.declared_kind

    if kind == DeclaredKind.TEXT:
        if isinstance(payload, str):
            return ClassifiedGeometry(GeometryEncoding.WKT, payload)
        text = bytes(payload).decode("utf-8", errors="replace")
        return ClassifiedGeometry(GeometryEncoding.WKT, text)

    if kind == DeclaredKind.NATIVE_GEOMETRY_ALIAS:
        if isinstance(payload, str):
            return ClassifiedGeometry(GeometryEncoding.WKT, payload)
        if geometry.alias and geometry.alias.upper() in STANDARD_WKB_ALIASES:
            return ClassifiedGeometry(GeometryEncoding.STANDARD_WKB, _readonly_view(payload))

    if isinstance(payload, str):
        if kind != DeclaredKind.BLOB:
            return ClassifiedGeometry(GeometryEncoding.WKT, payload)
        payload = payload.encode("utf-8")

    view = _readonly_view(payload)
    return ClassifiedGeometry(sniff_binary(view), view)


def classify(
    payload: Union[GeometryInput, GeometryPayload],
    declared_kind: DeclaredKind = DeclaredKind.UNKNOWN,
    alias: Optional[str] = None,
) -> ClassifiedGeometry:
    """
    Classify a geometry payload. Never raises.

    Accepts either a GeometryInput or a bare payload plus its declared kind.
    """
    geometry = payload if isinstance(payload, GeometryInput) else GeometryInput(payload, declared_kind, alias)
    geometry = replace(geometry, declared_kind=_normalize_kind(geometry.declared_kind))

    try:
        classified = _classify(geometry)
    except (TypeError, ValueError) as e:
        # Payload that cannot be viewed as bytes at all
        logger.debug(f"Geometry payload not classifiable: {e}")
        classified = ClassifiedGeometry(GeometryEncoding.UNRECOGNIZED, memoryview(b""))

    record_classification(classified.encoding.value)
    logger.debug(
        f"Classified {geometry.declared_kind.value} geometry ({classified.size} units) "
        f"as {classified.encoding.value}"
    )
    return classified


class GeometryClassifier:
    """Object facade over `classify` for injection into the orchestrator."""

    rules = SNIFF_RULES

    def classify(
        self,
        payload: Union[GeometryInput, GeometryPayload],
        declared_kind: DeclaredKind = DeclaredKind.UNKNOWN,
        alias: Optional[str] = None,
    ) -> ClassifiedGeometry:
        return classify(payload, declared_kind, alias)
