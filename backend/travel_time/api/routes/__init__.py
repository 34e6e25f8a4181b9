"""
API routes module.
"""

from fastapi import APIRouter

from travel_time.api.routes import (
    health,
    routing,
)

# Main API router (mounted at /api/v1)
api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(routing.router)
