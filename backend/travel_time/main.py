"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from travel_time.core.config import settings
from travel_time.core.exceptions import EngineLoadException, register_exception_handlers
from travel_time.core.logging import setup_logging, RequestLoggingMiddleware
from travel_time.core.metrics import PrometheusMiddleware, metrics_endpoint
from travel_time.api.routes import api_router
from travel_time.services.engine.base import EngineContext, engine_context

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=not settings.DEBUG,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting application...")
    settings.validate_production_settings()
    _load_engine(engine_context)
    logger.info("Application started successfully")
    yield
    logger.info("Shutting down application...")
    engine_context.unload()
    logger.info("Application shutdown complete")


def _load_engine(context: EngineContext) -> bool:
    """Load VALHALLA_URL for every autoload mode; the API stays up without it."""
    if not settings.VALHALLA_URL:
        logger.info("VALHALLA_URL not set; engine must be loaded via POST /engine/load")
        return False

    try:
        for mode in settings.AUTOLOAD_MODES:
            context.load(settings.VALHALLA_URL, mode)
    except EngineLoadException as e:
        logger.warning(f"Engine autoload from {settings.VALHALLA_URL} failed: {e.message}")
        return False

    logger.info(f"Engine ready for modes: {', '.join(context.loaded_modes)}")
    return True


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Travel time, route, matrix and isochrone service over Valhalla",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    if settings.METRICS_ENABLED:
        app.add_middleware(PrometheusMiddleware)

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    if settings.METRICS_ENABLED:
        app.add_api_route(
            settings.METRICS_PATH,
            metrics_endpoint,
            methods=["GET"],
            include_in_schema=False,
        )

    logger.info(f"Application configured: {settings.APP_NAME} v{settings.APP_VERSION}")

    return app


app = create_app()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None,
    }
