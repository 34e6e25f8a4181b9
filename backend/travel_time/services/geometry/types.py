"""
Value types shared by the geometry and routing layers.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

GeometryPayload = Union[bytes, bytearray, memoryview, str]

LAT_RANGE = (-90.0, 90.0)
LON_RANGE = (-180.0, 180.0)


class DeclaredKind(str, Enum):
    """Storage type the caller declared for a geometry value."""
    TEXT = "text"
    BLOB = "blob"
    NATIVE_GEOMETRY_ALIAS = "native_geometry_alias"
    UNKNOWN = "unknown"


class GeometryEncoding(str, Enum):
    """Encoding detected by the classifier."""
    WKT = "wkt"
    STANDARD_WKB = "standard_wkb"
    INTERNAL_COLUMNAR_BLOB = "internal_columnar_blob"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class Coordinate:
    """WGS84 point. Construction validates the range."""
    lat: float
    lon: float

    def __post_init__(self):
        if not self.is_valid(self.lat, self.lon):
            raise ValueError(f"Coordinate out of range: lat={self.lat}, lon={self.lon}")

    @staticmethod
    def is_valid(lat: float, lon: float) -> bool:
        if math.isnan(lat) or math.isnan(lon):
            return False
        return LAT_RANGE[0] <= lat <= LAT_RANGE[1] and LON_RANGE[0] <= lon <= LON_RANGE[1]

    def to_wkt(self) -> str:
        return f"POINT({self.lon!r} {self.lat!r})"

    def to_location(self) -> dict:
        """Valhalla location object."""
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class RoutePoint:
    """One vertex of a computed path."""
    lat: float
    lon: float


@dataclass(frozen=True)
class GeometryInput:
    """
    Raw geometry value as supplied by the caller.

    `alias` names the geometry library's type alias when the value was
    declared as NATIVE_GEOMETRY_ALIAS (e.g. "GEOMETRY", "WKB_BLOB").
    """
    payload: GeometryPayload
    declared_kind: DeclaredKind = DeclaredKind.UNKNOWN
    alias: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return isinstance(self.payload, str)


@dataclass(frozen=True)
class ClassifiedGeometry:
    """
    Classifier output.

    `data_view` is the caller's string for WKT, or a read-only view over
    the caller's bytes. It never outlives the originating request.
    """
    encoding: GeometryEncoding
    data_view: Union[memoryview, str]

    @property
    def size(self) -> int:
        return len(self.data_view)

    def as_text(self) -> str:
        if isinstance(self.data_view, str):
            return self.data_view
        return bytes(self.data_view).decode("utf-8", errors="replace")
