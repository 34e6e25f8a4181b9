"""
Routing API endpoints.

Handlers are plain `def` so FastAPI runs them in its threadpool; the
engine lock inside EngineContext serializes the actual engine calls.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Response, status

from travel_time.core.config import settings
from travel_time.core.exceptions import ValidationException
from travel_time.schemas.routing import (
    BatchTravelTimeRequest,
    BatchTravelTimeResponse,
    EngineLoadRequest,
    EngineStatusResponse,
    GeometryRouteRequest,
    IsochroneContourResponse,
    IsochroneRequest,
    IsochroneResponse,
    LocateRequest,
    LocateResponse,
    MatrixEntryResponse,
    MatrixRequest,
    MatrixResponse,
    RouteRequest,
    RouteResponse,
    TravelTimeRequest,
    TravelTimeResponse,
)
from travel_time.services.engine.base import EngineContext, engine_context
from travel_time.services.routing.matrix import BatchMatrixRunner, MatrixRunnerStore, matrix_runner_store
from travel_time.services.routing.orchestrator import (
    RouteSummary,
    RoutingOrchestrator,
    routing_orchestrator,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Routing"])


def get_engine_context() -> EngineContext:
    """Dependency injection for the shared engine context."""
    return engine_context


def get_orchestrator() -> RoutingOrchestrator:
    """Dependency injection for the routing orchestrator."""
    return routing_orchestrator


def get_matrix_store() -> MatrixRunnerStore:
    """Dependency injection for executed matrices awaiting further pages."""
    return matrix_runner_store


def _route_response(summary: RouteSummary) -> RouteResponse:
    return RouteResponse(
        distance_m=summary.distance_m,
        duration_s=summary.duration_s,
        distance_km=summary.distance_km,
        duration_minutes=summary.duration_minutes,
        num_points=summary.num_points,
        capacity_exceeded=summary.capacity_exceeded,
        request_path=summary.request_path.value,
        wkb_hex=summary.geometry.hex().upper(),
        coordinates=[[p.lon, p.lat] for p in summary.points],
    )


# =============================================================================
# Engine
# =============================================================================

@router.post(
    "/engine/load",
    response_model=EngineStatusResponse,
    summary="Load the routing engine for one or more travel modes",
)
def load_engine(
    request: EngineLoadRequest,
    context: EngineContext = Depends(get_engine_context),
) -> EngineStatusResponse:
    for mode in request.modes:
        context.load(request.target, mode)
    return EngineStatusResponse(**context.status())


@router.get("/engine/status", response_model=EngineStatusResponse)
def engine_status(context: EngineContext = Depends(get_engine_context)) -> EngineStatusResponse:
    return EngineStatusResponse(**context.status())


@router.delete("/engine", status_code=status.HTTP_204_NO_CONTENT)
def unload_engine(
    mode: str | None = None,
    context: EngineContext = Depends(get_engine_context),
) -> Response:
    context.unload(mode)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/engine/node-count")
def engine_node_count(
    mode: str = settings.DEFAULT_COSTING,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> dict:
    return {"mode": mode, "node_count": orchestrator.node_count(mode)}


# =============================================================================
# Travel time and routes
# =============================================================================

@router.post("/travel-time", response_model=TravelTimeResponse)
def travel_time(
    request: TravelTimeRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> TravelTimeResponse:
    seconds = orchestrator.travel_time(
        request.origin.to_coordinate(),
        request.destination.to_coordinate(),
        request.mode,
    )
    return TravelTimeResponse(duration_s=seconds, mode=request.mode)


@router.post("/travel-time/batch", response_model=BatchTravelTimeResponse)
def batch_travel_time(
    request: BatchTravelTimeRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> BatchTravelTimeResponse:
    batch = orchestrator.batch_travel_time(
        [o.to_coordinate() for o in request.origins],
        [d.to_coordinate() for d in request.destinations],
        request.mode,
    )
    return BatchTravelTimeResponse(durations_s=batch.seconds, success_count=batch.success_count)


@router.post("/route", response_model=RouteResponse)
def route(
    request: RouteRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> RouteResponse:
    summary = orchestrator.route(
        request.origin.to_coordinate(),
        request.destination.to_coordinate(),
        request.mode,
        request.max_points,
    )
    return _route_response(summary)


@router.post(
    "/route/geometry",
    response_model=RouteResponse,
    summary="Route between two geometries",
    description="""
    Endpoints may be WKT POINT text or binary geometry (hex or base64):
    standard WKB/EWKB points or columnar engine point blobs. Each endpoint
    is reduced to one coordinate before routing.
    """,
)
def route_geometry(
    request: GeometryRouteRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> RouteResponse:
    summary = orchestrator.route_geometry(
        request.origin.to_input(),
        request.destination.to_input(),
        request.mode,
        request.max_points,
    )
    return _route_response(summary)


# =============================================================================
# Locate / isochrone / matrix
# =============================================================================

@router.post("/locate", response_model=LocateResponse)
def locate(
    request: LocateRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> LocateResponse:
    result = orchestrator.snap(request.location.to_coordinate(), request.mode)
    return LocateResponse(lat=result.coordinate.lat, lon=result.coordinate.lon, distance_m=result.distance_m)


@router.post("/isochrone", response_model=IsochroneResponse)
def isochrone(
    request: IsochroneRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> IsochroneResponse:
    contours = orchestrator.isochrone(request.origin.to_coordinate(), request.contours_s, request.mode)
    return IsochroneResponse(
        contours=[
            IsochroneContourResponse(
                target_seconds=c.target_seconds,
                wkb_hex=c.boundary_geometry.hex().upper(),
                boundary=[[p.lon, p.lat] for p in c.boundary_points],
            )
            for c in contours
        ]
    )


@router.post(
    "/matrix",
    response_model=MatrixResponse,
    summary="Source/target travel matrix, one page at a time",
)
def matrix(
    request: MatrixRequest,
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
    store: MatrixRunnerStore = Depends(get_matrix_store),
) -> MatrixResponse:
    if request.matrix_id:
        runner = store.get(request.matrix_id)
        if runner is None:
            raise ValidationException(
                message="Unknown or expired matrix_id",
                details={"matrix_id": request.matrix_id},
            )
    else:
        runner = BatchMatrixRunner.bind(
            [s.lat for s in request.sources],
            [s.lon for s in request.sources],
            [t.lat for t in request.targets],
            [t.lon for t in request.targets],
            request.mode,
            page_size=request.page_size,
        )
        runner.execute(orchestrator)

    runner.seek(request.cursor)
    page = runner.fetch()

    matrix_id = None
    if runner.done:
        if request.matrix_id:
            store.evict(request.matrix_id)
    else:
        matrix_id = request.matrix_id or store.put(runner)

    return MatrixResponse(
        entries=[
            MatrixEntryResponse(
                from_index=e.from_index,
                to_index=e.to_index,
                distance_m=e.distance_m,
                duration_s=e.duration_s,
            )
            for e in page
        ],
        matrix_id=matrix_id,
        total=runner.total,
        cursor=request.cursor,
        next_cursor=None if runner.done else runner.cursor,
        done=runner.done,
    )


# =============================================================================
# Raw engine request
# =============================================================================

@router.post(
    "/request/{action}",
    summary="Forward a raw JSON request to an engine action",
)
def raw_request(
    action: str,
    body: Optional[dict[str, Any]] = Body(default=None),
    orchestrator: RoutingOrchestrator = Depends(get_orchestrator),
) -> Response:
    content = orchestrator.raw_request(action, json.dumps(body or {}))
    return Response(content=content, media_type="application/json")

