"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from travel_time.api.routes.routing import get_engine_context
from travel_time.services.engine.base import EngineContext

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/detailed")
def detailed_health_check(
    context: EngineContext = Depends(get_engine_context),
) -> dict:
    """Detailed health check including the routing engine."""
    engine = context.status()
    checks = {
        "api": "healthy",
        "engine": "healthy" if engine["loaded"] else "not loaded",
    }

    overall = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall,
        "checks": checks,
        "engine": engine,
    }
