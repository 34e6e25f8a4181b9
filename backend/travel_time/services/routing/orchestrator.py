"""
Per-request routing control flow.

Every operation runs inside one EngineContext session, so the engine lock
is held from readiness check through response parsing:

    IDLE -> ENDPOINTS_RESOLVED -> ENGINE_INVOKED -> RESULT_NORMALIZED -> DONE

and FAILED from any state. Readiness is checked on entering the session,
before any geometry is classified. Nothing is retried.
"""
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from math import atan2, cos, radians, sin, sqrt
from typing import Iterator, Optional, Sequence, Union

import polyline

from travel_time.core.config import settings
from travel_time.core.exceptions import (
    AppException,
    EngineRequestException,
    ValidationException,
)
from travel_time.core.logging import routing_context
from travel_time.core.metrics import ROUTES_TRUNCATED_TOTAL
from travel_time.services.engine.base import EngineContext, EngineResponse, RoutingEngine, engine_context
from travel_time.services.geometry.classifier import GeometryClassifier
from travel_time.services.geometry.encoder import decode_polygon_ring, encode_linestring, encode_polygon
from travel_time.services.geometry.extractor import CentroidExtractor, extract_wkt_point
from travel_time.services.geometry.types import (
    Coordinate,
    DeclaredKind,
    GeometryEncoding,
    GeometryInput,
    GeometryPayload,
    RoutePoint,
)

logger = logging.getLogger(__name__)

KM_TO_M = 1000.0
MILE_TO_M = 1609.344
POLYLINE_PRECISION = 6
EARTH_RADIUS_M = 6371000

# Raised while normalizing an engine body of unexpected shape or values
MALFORMED_RESPONSE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)

# Raw request actions accepted by the engine; "matrix" is an alias
RAW_ACTIONS = {
    "route": "route",
    "matrix": "sources_to_targets",
    "sources_to_targets": "sources_to_targets",
    "isochrone": "isochrone",
    "locate": "locate",
    "trace_route": "trace_route",
    "trace_attributes": "trace_attributes",
    "optimized_route": "optimized_route",
    "height": "height",
    "status": "status",
}

EndpointLike = Union[GeometryInput, GeometryPayload]
CoordinateLike = Union[Coordinate, Sequence[float]]


class RequestState(str, Enum):
    IDLE = "idle"
    ENDPOINTS_RESOLVED = "endpoints_resolved"
    ENGINE_INVOKED = "engine_invoked"
    RESULT_NORMALIZED = "result_normalized"
    DONE = "done"
    FAILED = "failed"


class RequestPath(str, Enum):
    """How the route endpoints reached the engine."""
    COORDINATES = "coordinates"
    TEXT = "text"
    BINARY = "binary"


@dataclass
class RouteSummary:
    """Normalized route: metres, seconds, path in visiting order."""
    distance_m: float
    duration_s: float
    points: list[RoutePoint] = field(default_factory=list)
    geometry: bytes = b""
    capacity_exceeded: bool = False
    total_points: int = 0
    request_path: RequestPath = RequestPath.COORDINATES

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def distance_km(self) -> float:
        return self.distance_m / KM_TO_M

    @property
    def duration_minutes(self) -> float:
        return self.duration_s / 60.0


@dataclass(frozen=True)
class MatrixEntry:
    """One cell; -1 marks an unreachable pair."""
    from_index: int
    to_index: int
    distance_m: float
    duration_s: float


@dataclass(frozen=True)
class IsochroneContour:
    target_seconds: float
    boundary_geometry: bytes

    @property
    def boundary_points(self) -> list[RoutePoint]:
        return decode_polygon_ring(self.boundary_geometry)


@dataclass(frozen=True)
class SnapResult:
    coordinate: Coordinate
    distance_m: float


@dataclass
class BatchTravelTimes:
    seconds: list[float]
    success_count: int


class RequestTracker:
    """State of one orchestrated request."""

    def __init__(self, operation: str, mode: Optional[str]):
        self.operation = operation
        self.mode = mode
        self.state = RequestState.IDLE
        self.error_code: Optional[str] = None

    def advance(self, state: RequestState) -> None:
        logger.debug(f"{self.operation}[{self.mode}]: {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, exc: AppException) -> None:
        logger.warning(
            f"{self.operation}[{self.mode}] failed in state {self.state.value}: "
            f"{exc.error_code} {exc.message}"
        )
        self.error_code = exc.error_code
        self.state = RequestState.FAILED


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres."""
    lat1, lon1, lat2, lon2 = map(radians, [a.lat, a.lon, b.lat, b.lon])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(h), sqrt(1 - h))


def as_coordinate(value: CoordinateLike) -> Coordinate:
    """Accept a Coordinate or a (lat, lon) pair."""
    if isinstance(value, Coordinate):
        return value
    try:
        lat, lon = float(value[0]), float(value[1])
        return Coordinate(lat=lat, lon=lon)
    except (TypeError, ValueError, IndexError):
        raise ValidationException(
            message=f"Invalid coordinate: {value!r}",
            details={"coordinate": repr(value)},
        )


def _length_factor(response: dict) -> float:
    units = str(response.get("units", "kilometers")).lower()
    return MILE_TO_M if units.startswith("mi") else KM_TO_M


class RoutingOrchestrator:
    """
    Routing operations over an EngineContext.

    The travel mode is passed to Valhalla as the costing model
    ("auto", "bicycle", "pedestrian", ...).
    """

    def __init__(
        self,
        context: EngineContext,
        classifier: Optional[GeometryClassifier] = None,
        extractor: Optional[CentroidExtractor] = None,
    ):
        self.context = context
        self.classifier = classifier or GeometryClassifier()
        self.extractor = extractor or CentroidExtractor()

    @contextmanager
    def _request(self, operation: str, mode: Optional[str]) -> Iterator[tuple[RequestTracker, RoutingEngine]]:
        tracker = RequestTracker(operation, mode)
        try:
            with routing_context(operation, mode), self.context.session(mode) as engine:
                yield tracker, engine
                tracker.advance(RequestState.DONE)
        except AppException as e:
            tracker.fail(e)
            raise
        except MALFORMED_RESPONSE_ERRORS as e:
            exc = EngineRequestException(
                message=f"Unexpected {operation} response from engine: {e!r}",
                details={"operation": operation},
            )
            tracker.fail(exc)
            raise exc from e

    def _invoke(self, engine: RoutingEngine, tracker: RequestTracker, action: str, payload: dict) -> EngineResponse:
        response = engine.request(action, payload)
        tracker.advance(RequestState.ENGINE_INVOKED)
        return response

    # =========================================================================
    # Endpoint resolution
    # =========================================================================

    def resolve_endpoint(self, endpoint: EndpointLike) -> tuple[Coordinate, GeometryEncoding]:
        classified = self.classifier.classify(endpoint)
        return self.extractor.extract(classified), classified.encoding

    def _resolve_pair(self, origin: EndpointLike, destination: EndpointLike) -> tuple[Coordinate, Coordinate, RequestPath]:
        """
        Resolve both endpoints; either failing fails the request.

        When one endpoint is WKT and the other binary, the binary centroid is
        re-rendered as WKT and read back so the pair goes down the text path.
        """
        from_coord, from_enc = self.resolve_endpoint(origin)
        to_coord, to_enc = self.resolve_endpoint(destination)

        from_text = from_enc == GeometryEncoding.WKT
        to_text = to_enc == GeometryEncoding.WKT
        if from_text and to_text:
            return from_coord, to_coord, RequestPath.TEXT
        if not from_text and not to_text:
            return from_coord, to_coord, RequestPath.BINARY

        logger.info(f"Mixed endpoint encodings ({from_enc.value}, {to_enc.value}); using text path")
        if not from_text:
            from_coord = extract_wkt_point(from_coord.to_wkt())
        if not to_text:
            to_coord = extract_wkt_point(to_coord.to_wkt())
        return from_coord, to_coord, RequestPath.TEXT

    # =========================================================================
    # Routes
    # =========================================================================

    def _route_payload(self, origin: Coordinate, destination: Coordinate, mode: str, with_shape: bool = True) -> dict:
        directions = {"units": "kilometers"}
        if not with_shape:
            directions["directions_type"] = "none"
        return {
            "locations": [origin.to_location(), destination.to_location()],
            "costing": mode,
            "directions_options": directions,
        }

    def _route_on(
        self,
        engine: RoutingEngine,
        tracker: RequestTracker,
        origin: Coordinate,
        destination: Coordinate,
        mode: str,
        max_points: int,
        request_path: RequestPath,
    ) -> RouteSummary:
        response = self._invoke(engine, tracker, "route", self._route_payload(origin, destination, mode))
        trip = response["trip"]
        factor = _length_factor(trip)
        summary = trip["summary"]

        path: list[RoutePoint] = []
        for leg in trip.get("legs", []):
            shape = leg.get("shape")
            if shape:
                path.extend(RoutePoint(lat=lat, lon=lon) for lat, lon in polyline.decode(shape, POLYLINE_PRECISION))

        total = len(path)
        exceeded = total > max_points
        if exceeded:
            ROUTES_TRUNCATED_TOTAL.inc()
            logger.info(f"Route path truncated at {max_points} of {total} points")
            path = path[:max_points]

        result = RouteSummary(
            distance_m=float(summary["length"]) * factor,
            duration_s=float(summary["time"]),
            points=path,
            geometry=encode_linestring(path),
            capacity_exceeded=exceeded,
            total_points=total,
            request_path=request_path,
        )
        tracker.advance(RequestState.RESULT_NORMALIZED)
        return result

    @staticmethod
    def _check_capacity(max_points: Optional[int], default: int) -> int:
        if max_points is None:
            return default
        if max_points < 0:
            raise ValidationException(
                message=f"max_points must be non-negative, got {max_points}",
                details={"max_points": max_points},
            )
        return max_points

    def route(
        self,
        origin: CoordinateLike,
        destination: CoordinateLike,
        mode: str = settings.DEFAULT_COSTING,
        max_points: Optional[int] = None,
    ) -> RouteSummary:
        """Route between two coordinates."""
        capacity = self._check_capacity(max_points, settings.ROUTE_MAX_POINTS)
        with self._request("route", mode) as (tracker, engine):
            start, end = as_coordinate(origin), as_coordinate(destination)
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            return self._route_on(engine, tracker, start, end, mode, capacity, RequestPath.COORDINATES)

    def route_geometry(
        self,
        origin: EndpointLike,
        destination: EndpointLike,
        mode: str = settings.DEFAULT_COSTING,
        max_points: Optional[int] = None,
    ) -> RouteSummary:
        """Route between the centroids of two geometries of any supported encoding."""
        capacity = self._check_capacity(max_points, settings.ROUTE_MAX_POINTS)
        with self._request("route_geometry", mode) as (tracker, engine):
            start, end, path = self._resolve_pair(origin, destination)
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            return self._route_on(engine, tracker, start, end, mode, capacity, path)

    def route_wkt(self, from_wkt: str, to_wkt: str, mode: str = settings.DEFAULT_COSTING, max_points: Optional[int] = None) -> RouteSummary:
        return self.route_geometry(
            GeometryInput(from_wkt, DeclaredKind.TEXT),
            GeometryInput(to_wkt, DeclaredKind.TEXT),
            mode,
            max_points,
        )

    def route_wkb(self, from_wkb: bytes, to_wkb: bytes, mode: str = settings.DEFAULT_COSTING, max_points: Optional[int] = None) -> RouteSummary:
        return self.route_geometry(
            GeometryInput(from_wkb, DeclaredKind.NATIVE_GEOMETRY_ALIAS, "WKB_BLOB"),
            GeometryInput(to_wkb, DeclaredKind.NATIVE_GEOMETRY_ALIAS, "WKB_BLOB"),
            mode,
            max_points,
        )

    # =========================================================================
    # Travel time
    # =========================================================================

    def _travel_time_on(self, engine: RoutingEngine, tracker: RequestTracker, origin: Coordinate, destination: Coordinate, mode: str) -> float:
        response = self._invoke(engine, tracker, "route", self._route_payload(origin, destination, mode, with_shape=False))
        seconds = float(response["trip"]["summary"]["time"])
        tracker.advance(RequestState.RESULT_NORMALIZED)
        return seconds

    def travel_time(self, origin: CoordinateLike, destination: CoordinateLike, mode: str = settings.DEFAULT_COSTING) -> float:
        """Travel time in seconds."""
        with self._request("travel_time", mode) as (tracker, engine):
            start, end = as_coordinate(origin), as_coordinate(destination)
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            return self._travel_time_on(engine, tracker, start, end, mode)

    def batch_travel_time(
        self,
        origins: Sequence[CoordinateLike],
        destinations: Sequence[CoordinateLike],
        mode: str = settings.DEFAULT_COSTING,
    ) -> BatchTravelTimes:
        """
        Pairwise travel times under one lock hold.

        A pair that fails (invalid coordinate, no route) yields -1.0 and is
        left out of success_count.
        """
        if len(origins) != len(destinations):
            raise ValidationException(
                message="Origin and destination arrays must have same length",
                details={"origins": len(origins), "destinations": len(destinations)},
            )

        seconds: list[float] = []
        with self._request("batch_travel_time", mode) as (tracker, engine):
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            for index, (origin, destination) in enumerate(zip(origins, destinations)):
                pair = RequestTracker(f"batch_travel_time[{index}]", mode)
                try:
                    start, end = as_coordinate(origin), as_coordinate(destination)
                    pair.advance(RequestState.ENDPOINTS_RESOLVED)
                    seconds.append(self._travel_time_on(engine, pair, start, end, mode))
                except (ValidationException, EngineRequestException) as e:
                    pair.fail(e)
                    seconds.append(-1.0)
                except MALFORMED_RESPONSE_ERRORS as e:
                    logger.warning(f"batch_travel_time[{index}]: unexpected engine response: {e!r}")
                    seconds.append(-1.0)
            tracker.advance(RequestState.RESULT_NORMALIZED)

        success = sum(1 for s in seconds if s >= 0)
        return BatchTravelTimes(seconds=seconds, success_count=success)

    # =========================================================================
    # Snap / isochrone / matrix
    # =========================================================================

    def snap(self, location: CoordinateLike, mode: str = settings.DEFAULT_COSTING) -> SnapResult:
        """Nearest point on the road network and its distance from the input."""
        with self._request("snap", mode) as (tracker, engine):
            point = as_coordinate(location)
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)

            response = self._invoke(engine, tracker, "locate", {
                "locations": [point.to_location()],
                "costing": mode,
                "verbose": True,
            })
            edges = response[0].get("edges") or []
            if not edges:
                raise EngineRequestException(
                    message="No road edge found near location",
                    details={"lat": point.lat, "lon": point.lon},
                )
            snapped = Coordinate(lat=float(edges[0]["correlated_lat"]), lon=float(edges[0]["correlated_lon"]))
            tracker.advance(RequestState.RESULT_NORMALIZED)
            return SnapResult(coordinate=snapped, distance_m=haversine_m(point, snapped))

    def isochrone(
        self,
        origin: CoordinateLike,
        contour_seconds: Sequence[float],
        mode: str = settings.DEFAULT_COSTING,
    ) -> list[IsochroneContour]:
        """Reachability polygons, one per requested contour, in request order."""
        if not contour_seconds or any(s <= 0 for s in contour_seconds):
            raise ValidationException(
                message="Isochrone contours must be positive seconds",
                details={"contours": list(contour_seconds)},
            )

        with self._request("isochrone", mode) as (tracker, engine):
            start = as_coordinate(origin)
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)

            minutes = [s / 60.0 for s in contour_seconds]
            response = self._invoke(engine, tracker, "isochrone", {
                "locations": [start.to_location()],
                "costing": mode,
                "contours": [{"time": m} for m in minutes],
                "polygons": True,
            })
            features = response.get("features", [])

            contours = []
            for index, (seconds, target_minutes) in enumerate(zip(contour_seconds, minutes)):
                feature = _match_contour(features, target_minutes, index)
                rings = _feature_rings(feature) if feature else []
                contours.append(IsochroneContour(target_seconds=float(seconds), boundary_geometry=encode_polygon(rings)))

            tracker.advance(RequestState.RESULT_NORMALIZED)
            return contours

    def matrix(
        self,
        sources: Sequence[CoordinateLike],
        targets: Sequence[CoordinateLike],
        mode: str = settings.DEFAULT_COSTING,
    ) -> list[MatrixEntry]:
        """
        All source/target pairs from one sources_to_targets request, row-major.

        An empty side yields an empty result without contacting the engine.
        """
        with self._request("matrix", mode) as (tracker, engine):
            src = [as_coordinate(c) for c in sources]
            dst = [as_coordinate(c) for c in targets]
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            if not src or not dst:
                tracker.advance(RequestState.RESULT_NORMALIZED)
                return []

            response = self._invoke(engine, tracker, "sources_to_targets", {
                "sources": [c.to_location() for c in src],
                "targets": [c.to_location() for c in dst],
                "costing": mode,
            })
            entries = _matrix_entries(response, len(src), len(dst))
            tracker.advance(RequestState.RESULT_NORMALIZED)
            return entries

    # =========================================================================
    # Raw engine access
    # =========================================================================

    def raw_request(self, action: str, request_json: str) -> str:
        """Forward a JSON request to one engine action and return its JSON."""
        engine_action = RAW_ACTIONS.get(action)
        if engine_action is None:
            raise EngineRequestException(
                message=f"Unknown action: {action}",
                details={"action": action, "supported": sorted(RAW_ACTIONS)},
            )
        try:
            payload = json.loads(request_json) if request_json else {}
        except json.JSONDecodeError as e:
            raise ValidationException(message=f"Invalid request JSON: {e}")
        if not isinstance(payload, dict):
            raise ValidationException(message="Request JSON must be an object")

        with self._request(f"request:{action}", None) as (tracker, engine):
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            response = self._invoke(engine, tracker, engine_action, payload)
            tracker.advance(RequestState.RESULT_NORMALIZED)
            return json.dumps(response)

    def node_count(self, mode: str = settings.DEFAULT_COSTING) -> int:
        """Graph node count as reported by the engine's verbose status."""
        with self._request("node_count", mode) as (tracker, engine):
            tracker.advance(RequestState.ENDPOINTS_RESOLVED)
            status = self._invoke(engine, tracker, "status", {"verbose": True})
            if not isinstance(status, dict) or "node_count" not in status:
                raise EngineRequestException(
                    message="Engine status does not report node_count",
                    details={"keys": sorted(status) if isinstance(status, dict) else None},
                )
            tracker.advance(RequestState.RESULT_NORMALIZED)
            return int(status["node_count"])


# =============================================================================
# Response helpers
# =============================================================================

def _cell_value(value, factor: float = 1.0) -> float:
    return -1.0 if value is None else float(value) * factor


def _matrix_entries(response: dict, src_count: int, dst_count: int) -> list[MatrixEntry]:
    """
    Flatten either matrix response shape into row-major entries.

    Rows of cell objects ({"distance", "time"}) or the compact
    {"durations": [[..]], "distances": [[..]]} form. Missing cells are -1.
    """
    factor = _length_factor(response)
    body = response.get("sources_to_targets", response)

    if isinstance(body, dict):
        durations = body.get("durations") or []
        distances = body.get("distances") or []

        def cell(i: int, j: int) -> tuple[float, float]:
            distance = distances[i][j] if i < len(distances) and j < len(distances[i]) else None
            duration = durations[i][j] if i < len(durations) and j < len(durations[i]) else None
            return _cell_value(distance, factor), _cell_value(duration)
    else:
        rows = body or []

        def cell(i: int, j: int) -> tuple[float, float]:
            item = rows[i][j] if i < len(rows) and j < len(rows[i]) else None
            if not item:
                return -1.0, -1.0
            return _cell_value(item.get("distance"), factor), _cell_value(item.get("time"))

    entries = []
    for i in range(src_count):
        for j in range(dst_count):
            distance_m, duration_s = cell(i, j)
            entries.append(MatrixEntry(from_index=i, to_index=j, distance_m=distance_m, duration_s=duration_s))
    return entries


def _match_contour(features: list, target_minutes: float, index: int) -> Optional[dict]:
    for feature in features:
        contour = (feature.get("properties") or {}).get("contour")
        if contour is not None and abs(float(contour) - target_minutes) < 1e-6:
            return feature
    return features[index] if index < len(features) else None


def _feature_rings(feature: dict) -> list[list[RoutePoint]]:
    """GeoJSON polygon rings as RoutePoints; first polygon of a MultiPolygon."""
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates") or []
    kind = geometry.get("type")
    if kind == "MultiPolygon":
        coords = coords[0] if coords else []
    elif kind == "LineString":
        coords = [coords]
    return [[RoutePoint(lat=float(p[1]), lon=float(p[0])) for p in ring] for ring in coords]


routing_orchestrator = RoutingOrchestrator(engine_context)
