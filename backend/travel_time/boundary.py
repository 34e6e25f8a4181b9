"""
Sentinel-code boundary for embedding hosts.

Flat functions over the shared engine context for callers that cannot
consume exceptions (database extensions, FFI shims, bulk loaders). Every
internal failure collapses to -1, except a missing engine which is -2.
Output goes into caller-allocated numpy buffers that are never resized.
"""
import logging
from typing import Optional, Sequence

import numpy as np

from travel_time.core.config import settings
from travel_time.core.exceptions import (
    SENTINEL_ERROR,
    SENTINEL_NOT_LOADED,
    AppException,
    sentinel_for,
)
from travel_time.services.engine.base import engine_context
from travel_time.services.geometry.types import DeclaredKind, GeometryInput
from travel_time.services.routing.orchestrator import RouteSummary, routing_orchestrator

logger = logging.getLogger(__name__)

ROUTE_RESULT_SLOTS = 3  # distance_m, duration_s, num_points
SNAP_RESULT_SLOTS = 3  # lat, lon, distance_m
ISOCHRONE_ROW = 3  # lat, lon, seconds


def _flat_view(buffer: np.ndarray, required: int) -> Optional[np.ndarray]:
    """1-D writable view over a C-contiguous buffer holding at least `required` values."""
    if not isinstance(buffer, np.ndarray) or not buffer.flags.c_contiguous or not buffer.flags.writeable:
        return None
    if buffer.size < required:
        return None
    return buffer.reshape(-1)


def _report(operation: str, exc: AppException) -> int:
    code = sentinel_for(exc)
    logger.debug(f"{operation} -> {code}: {exc.error_code} {exc.message}")
    return code


# =============================================================================
# Engine lifecycle
# =============================================================================

def load(target: str, mode: str = settings.DEFAULT_COSTING) -> int:
    try:
        engine_context.load(target, mode)
    except AppException as e:
        logger.warning(f"load({target!r}, {mode!r}) failed: {e.message}")
        return SENTINEL_ERROR
    return 0


def free(mode: Optional[str] = None) -> None:
    engine_context.unload(mode)


def is_loaded(mode: str = settings.DEFAULT_COSTING) -> int:
    return 1 if engine_context.is_loaded(mode) else 0


def node_count(mode: str = settings.DEFAULT_COSTING) -> int:
    try:
        return routing_orchestrator.node_count(mode)
    except AppException as e:
        return _report("node_count", e)


# =============================================================================
# Travel time
# =============================================================================

def travel_time(lat1: float, lon1: float, lat2: float, lon2: float, mode: str = settings.DEFAULT_COSTING) -> float:
    """Seconds, -1.0 when no route, -2.0 when the engine is not loaded."""
    try:
        return routing_orchestrator.travel_time((lat1, lon1), (lat2, lon2), mode)
    except AppException as e:
        return float(_report("travel_time", e))


def batch_travel_time(
    lats1: Sequence[float],
    lons1: Sequence[float],
    lats2: Sequence[float],
    lons2: Sequence[float],
    results: np.ndarray,
    count: int,
    mode: str = settings.DEFAULT_COSTING,
) -> int:
    """
    Fill results[:count] with seconds per pair (-1.0 for failed pairs).

    Returns the number of successful pairs.
    """
    out = _flat_view(results, count)
    if out is None or count < 0 or min(len(lats1), len(lons1), len(lats2), len(lons2)) < count:
        return SENTINEL_ERROR

    origins = list(zip(lats1[:count], lons1[:count]))
    destinations = list(zip(lats2[:count], lons2[:count]))
    try:
        batch = routing_orchestrator.batch_travel_time(origins, destinations, mode)
    except AppException as e:
        return _report("batch_travel_time", e)

    out[:count] = batch.seconds
    return batch.success_count


# =============================================================================
# Snap / isochrone
# =============================================================================

def snap(lat: float, lon: float, mode: str, out: np.ndarray) -> int:
    """Write (snapped_lat, snapped_lon, distance_m) into out."""
    view = _flat_view(out, SNAP_RESULT_SLOTS)
    if view is None:
        return SENTINEL_ERROR
    try:
        result = routing_orchestrator.snap((lat, lon), mode)
    except AppException as e:
        return _report("snap", e)

    view[:SNAP_RESULT_SLOTS] = (result.coordinate.lat, result.coordinate.lon, result.distance_m)
    return 0


def isochrone(
    lat: float,
    lon: float,
    max_seconds: float,
    mode: str,
    out_results: np.ndarray,
    max_results: int,
) -> int:
    """
    Write the outer-ring vertices of the max_seconds isochrone as
    (lat, lon, seconds) rows, at most max_results of them, and return the
    row count.

    Rows are points on the reachability boundary, not sampled reachable
    points: every row carries max_seconds as its travel time rather than
    a per-point time.
    """
    if max_results <= 0:
        return SENTINEL_ERROR
    view = _flat_view(out_results, max_results * ISOCHRONE_ROW)
    if view is None:
        return SENTINEL_ERROR
    try:
        contours = routing_orchestrator.isochrone((lat, lon), [max_seconds], mode)
    except AppException as e:
        return _report("isochrone", e)

    points = contours[0].boundary_points if contours else []
    written = min(len(points), max_results)
    if len(points) > max_results:
        logger.info(f"Isochrone boundary truncated at {max_results} of {len(points)} vertices")
    for i, point in enumerate(points[:written]):
        view[i * ISOCHRONE_ROW : (i + 1) * ISOCHRONE_ROW] = (point.lat, point.lon, max_seconds)
    return written


# =============================================================================
# Routes
# =============================================================================

def _write_route(summary: RouteSummary, out_result: np.ndarray, out_points: np.ndarray, max_points: int) -> int:
    result_view = _flat_view(out_result, ROUTE_RESULT_SLOTS)
    points_view = _flat_view(out_points, max_points * 2)
    count = min(summary.num_points, max_points)
    result_view[:ROUTE_RESULT_SLOTS] = (summary.distance_m, summary.duration_s, count)
    for i, point in enumerate(summary.points[:count]):
        points_view[2 * i] = point.lat
        points_view[2 * i + 1] = point.lon
    return count


def _buffers_ok(out_result: np.ndarray, out_points: np.ndarray, max_points: int) -> bool:
    return (
        max_points > 0
        and _flat_view(out_result, ROUTE_RESULT_SLOTS) is not None
        and _flat_view(out_points, max_points * 2) is not None
    )


def route(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    mode: str,
    out_result: np.ndarray,
    out_points: np.ndarray,
    max_points: int,
) -> int:
    """
    Route into caller buffers.

    out_result receives (distance_m, duration_s, num_points); out_points
    receives up to max_points (lat, lon) rows. Returns the points written.
    """
    if not _buffers_ok(out_result, out_points, max_points):
        return SENTINEL_ERROR
    try:
        summary = routing_orchestrator.route((lat1, lon1), (lat2, lon2), mode, max_points)
    except AppException as e:
        return _report("route", e)
    return _write_route(summary, out_result, out_points, max_points)


def route_geom(
    from_wkt: str,
    to_wkt: str,
    mode: str,
    out_result: np.ndarray,
    out_points: np.ndarray,
    max_points: int,
) -> int:
    """As `route`, with WKT POINT endpoints."""
    if not _buffers_ok(out_result, out_points, max_points):
        return SENTINEL_ERROR
    try:
        summary = routing_orchestrator.route_wkt(from_wkt, to_wkt, mode, max_points)
    except AppException as e:
        return _report("route_geom", e)
    return _write_route(summary, out_result, out_points, max_points)


def route_wkb(
    from_wkb: bytes,
    to_wkb: bytes,
    mode: str,
    out_result: np.ndarray,
    out_points: np.ndarray,
    max_points: int,
) -> int:
    """As `route`, with standard WKB point endpoints."""
    if not _buffers_ok(out_result, out_points, max_points):
        return SENTINEL_ERROR
    try:
        summary = routing_orchestrator.route_wkb(from_wkb, to_wkb, mode, max_points)
    except AppException as e:
        return _report("route_wkb", e)
    return _write_route(summary, out_result, out_points, max_points)


def route_wkb_blob(from_geom, to_geom, mode: str = settings.DEFAULT_COSTING) -> Optional[tuple[float, float, bytes]]:
    """
    Route between two geometries of undeclared encoding.

    Returns (distance_km, duration_minutes, wkb_linestring), or None on
    any failure.
    """
    try:
        summary = routing_orchestrator.route_geometry(
            GeometryInput(from_geom, DeclaredKind.UNKNOWN),
            GeometryInput(to_geom, DeclaredKind.UNKNOWN),
            mode,
            settings.TRAVEL_TIME_MAX_POINTS,
        )
    except AppException as e:
        _report("route_wkb_blob", e)
        return None
    return summary.distance_km, summary.duration_minutes, summary.geometry


def request(action: str, request_json: str) -> Optional[str]:
    """Raw engine request; None on failure."""
    try:
        return routing_orchestrator.raw_request(action, request_json)
    except AppException as e:
        _report(f"request:{action}", e)
        return None


__all__ = [
    "SENTINEL_ERROR",
    "SENTINEL_NOT_LOADED",
    "batch_travel_time",
    "free",
    "is_loaded",
    "isochrone",
    "load",
    "node_count",
    "request",
    "route",
    "route_geom",
    "route_wkb",
    "route_wkb_blob",
    "snap",
    "travel_time",
]
