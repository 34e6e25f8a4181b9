"""
Schemas for the routing API.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from travel_time.core.config import settings
from travel_time.schemas.validators import Base64Bytes, HexBytes, Latitude, Longitude
from travel_time.services.geometry.types import Coordinate, DeclaredKind, GeometryInput


class Location(BaseModel):
    """WGS84 point."""

    lat: Latitude
    lon: Longitude

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lon=self.lon)


class GeometryEndpoint(BaseModel):
    """
    Route endpoint given as geometry.

    Exactly one of `wkt`, `wkb_hex` or `wkb_base64`. Binary values are
    declared as opaque blobs and sniffed, so columnar point blobs work too.
    """

    wkt: Optional[str] = Field(default=None, examples=["POINT(12.45 43.94)"])
    wkb_hex: HexBytes = None
    wkb_base64: Base64Bytes = None

    @model_validator(mode="after")
    def exactly_one(self):
        given = [v for v in (self.wkt, self.wkb_hex, self.wkb_base64) if v is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of wkt, wkb_hex, wkb_base64")
        return self

    def to_input(self) -> GeometryInput:
        if self.wkt is not None:
            return GeometryInput(self.wkt, DeclaredKind.TEXT)
        return GeometryInput(self.wkb_hex if self.wkb_hex is not None else self.wkb_base64, DeclaredKind.BLOB)


class EngineLoadRequest(BaseModel):
    target: str = Field(
        ...,
        min_length=1,
        description="Valhalla service URL, tile/config directory or valhalla.json path",
        examples=["http://localhost:8002", "/data/valhalla"],
    )
    modes: list[str] = Field(default_factory=lambda: [settings.DEFAULT_COSTING], min_length=1)


class EngineStatusResponse(BaseModel):
    loaded: bool
    target: Optional[str] = None
    modes: list[str] = []


class TravelTimeRequest(BaseModel):
    origin: Location
    destination: Location
    mode: str = settings.DEFAULT_COSTING


class TravelTimeResponse(BaseModel):
    duration_s: float
    mode: str


class BatchTravelTimeRequest(BaseModel):
    origins: list[Location] = Field(..., min_length=1)
    destinations: list[Location] = Field(..., min_length=1)
    mode: str = settings.DEFAULT_COSTING

    @model_validator(mode="after")
    def same_length(self):
        if len(self.origins) != len(self.destinations):
            raise ValueError("origins and destinations must have same length")
        return self


class BatchTravelTimeResponse(BaseModel):
    durations_s: list[float] = Field(..., description="Seconds per pair; -1 when no route")
    success_count: int


class RouteRequest(BaseModel):
    origin: Location
    destination: Location
    mode: str = settings.DEFAULT_COSTING
    max_points: int = Field(default=settings.ROUTE_MAX_POINTS, ge=0)


class GeometryRouteRequest(BaseModel):
    origin: GeometryEndpoint
    destination: GeometryEndpoint
    mode: str = settings.DEFAULT_COSTING
    max_points: int = Field(default=settings.ROUTE_MAX_POINTS, ge=0)


class RouteResponse(BaseModel):
    distance_m: float
    duration_s: float
    distance_km: float
    duration_minutes: float
    num_points: int
    capacity_exceeded: bool
    request_path: str
    wkb_hex: str = Field(..., description="Little-endian WKB linestring; empty when there are no points")
    coordinates: list[list[float]] = Field(..., description="[lon, lat] pairs in path order")


class LocateRequest(BaseModel):
    location: Location
    mode: str = settings.DEFAULT_COSTING


class LocateResponse(BaseModel):
    lat: float
    lon: float
    distance_m: float


class IsochroneRequest(BaseModel):
    origin: Location
    contours_s: list[float] = Field(..., min_length=1, max_length=4)
    mode: str = settings.DEFAULT_COSTING

    @field_validator("contours_s")
    @classmethod
    def positive_contours(cls, v):
        if any(s <= 0 for s in v):
            raise ValueError("contours must be positive seconds")
        return v


class IsochroneContourResponse(BaseModel):
    target_seconds: float
    wkb_hex: str
    boundary: list[list[float]] = Field(..., description="Outer ring as [lon, lat] pairs")


class IsochroneResponse(BaseModel):
    contours: list[IsochroneContourResponse]


class MatrixRequest(BaseModel):
    """
    First page: sources and targets. Later pages: the matrix_id returned by
    the first page plus next_cursor; the other fields are then ignored.
    """
    matrix_id: Optional[str] = None
    sources: list[Location] = Field(default_factory=list)
    targets: list[Location] = Field(default_factory=list)
    mode: str = settings.DEFAULT_COSTING
    cursor: int = Field(default=0, ge=0)
    page_size: int = Field(default=settings.MATRIX_PAGE_SIZE, ge=1)


class MatrixEntryResponse(BaseModel):
    from_index: int
    to_index: int
    distance_m: float
    duration_s: float


class MatrixResponse(BaseModel):
    entries: list[MatrixEntryResponse]
    matrix_id: Optional[str] = Field(None, description="Pass back with next_cursor; unset once done")
    total: int
    cursor: int
    next_cursor: Optional[int] = None
    done: bool
