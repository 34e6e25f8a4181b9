"""
Application configuration settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Travel Time Routing Service"
    APP_VERSION: str = "0.4.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Valhalla engine
    # URL, config directory or valhalla.json path; loaded on startup when set
    VALHALLA_URL: Optional[str] = None
    VALHALLA_HOST: str = "localhost"  # substituted for "*" in httpd listen addresses
    VALHALLA_TIMEOUT_SECONDS: float = 30.0
    VALHALLA_CONNECT_TIMEOUT_SECONDS: float = 10.0
    DEFAULT_COSTING: str = "auto"
    AUTOLOAD_MODES: list[str] = ["auto", "bicycle", "pedestrian"]

    # Output capacities
    TRAVEL_TIME_MAX_POINTS: int = 10000
    ROUTE_MAX_POINTS: int = 50000
    MATRIX_PAGE_SIZE: int = 2048
    # Executed matrices kept for cursor reads between HTTP page requests
    MATRIX_STORE_MAX_ENTRIES: int = 64
    MATRIX_STORE_TTL_SECONDS: int = 300
    ISOCHRONE_MAX_RESULTS: int = 10000

    def validate_production_settings(self) -> None:
        """Validate critical settings for production environment."""
        import logging
        import warnings

        logger = logging.getLogger(__name__)

        if self.ENVIRONMENT == "production":
            if self.DEBUG:
                raise ValueError("DEBUG must be False in production")

            if self.MATRIX_PAGE_SIZE <= 0:
                raise ValueError("MATRIX_PAGE_SIZE must be positive")

            insecure_origins = [o for o in self.CORS_ORIGINS if "localhost" in o or "127.0.0.1" in o]
            if insecure_origins:
                warnings.warn(
                    f"CORS_ORIGINS contains localhost entries: {insecure_origins}. "
                    "Consider removing for production.",
                    UserWarning,
                )

            if not self.VALHALLA_URL:
                logger.warning("VALHALLA_URL not configured. Engine must be loaded through the API.")

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Observability
    METRICS_ENABLED: bool = True
    METRICS_PATH: str = "/metrics"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
