"""
Prometheus metrics for observability.

Exposes metrics for:
- HTTP request latency and counts
- Valhalla engine requests and load state
- Geometry classification and centroid extraction paths
"""

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from travel_time.core.config import settings

# ============================================================
# HTTP Metrics
# ============================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)


# ============================================================
# Engine Metrics
# ============================================================

ENGINE_REQUEST_DURATION = Histogram(
    "engine_request_duration_seconds",
    "Valhalla request duration",
    ["action"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ENGINE_REQUESTS_TOTAL = Counter(
    "engine_requests_total",
    "Total Valhalla requests",
    ["action", "status"],
)

ENGINE_LOADED = Gauge(
    "engine_loaded",
    "Engine load state per travel mode (1=loaded, 0=not loaded)",
    ["mode"],
)

ROUTES_TRUNCATED_TOTAL = Counter(
    "routes_truncated_total",
    "Route paths truncated at the output capacity",
)


# ============================================================
# Geometry Metrics
# ============================================================

GEOMETRY_CLASSIFICATIONS_TOTAL = Counter(
    "geometry_classifications_total",
    "Geometry inputs classified, by detected encoding",
    ["encoding"],
)

CENTROID_EXTRACTIONS_TOTAL = Counter(
    "centroid_extractions_total",
    "Centroids extracted, by decoding method",
    ["method"],
)


APP_INFO = Info(
    "app",
    "Application information",
)
APP_INFO.info(
    {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
)


# ============================================================
# Middleware
# ============================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics.

    Tracks:
    - Request duration
    - Request count by endpoint and status
    - In-progress requests
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == settings.METRICS_PATH:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)

        HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

        start_time = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.perf_counter() - start_time

            HTTP_REQUEST_DURATION.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).observe(duration)

            HTTP_REQUEST_TOTAL.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()

            HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()

        return response

    def _normalize_path(self, path: str) -> str:
        """
        Normalize path by replacing dynamic segments with placeholders.

        /api/v1/request/trace_route -> /api/v1/request/{action}
        """
        parts = [part for part in path.split("/") if part]
        normalized = []

        for index, part in enumerate(parts):
            if index > 0 and parts[index - 1] == "request":
                normalized.append("{action}")
            elif part.isdigit():
                normalized.append("{id}")
            else:
                normalized.append(part)

        return "/" + "/".join(normalized) if normalized else "/"


# ============================================================
# Helper Functions
# ============================================================


def track_engine_request(action: str):
    """
    Context manager recording one engine request.

    Usage:
        with track_engine_request("route"):
            response = client.post(...)
    """

    class EngineRequestTracker:
        def __init__(self):
            self.start_time = None

        def __enter__(self):
            self.start_time = time.perf_counter()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            duration = time.perf_counter() - self.start_time
            ENGINE_REQUEST_DURATION.labels(action=action).observe(duration)
            ENGINE_REQUESTS_TOTAL.labels(
                action=action,
                status="error" if exc_type else "success",
            ).inc()
            return False

    return EngineRequestTracker()


def record_classification(encoding: str) -> None:
    GEOMETRY_CLASSIFICATIONS_TOTAL.labels(encoding=encoding).inc()


def record_extraction(method: str) -> None:
    CENTROID_EXTRACTIONS_TOTAL.labels(method=method).inc()


def update_engine_loaded(mode: str, loaded: bool) -> None:
    """Update engine load state for a travel mode."""
    ENGINE_LOADED.labels(mode=mode).set(1 if loaded else 0)


# ============================================================
# Metrics Endpoint
# ============================================================


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )
