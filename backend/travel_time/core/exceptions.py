"""
Standardized exception handling.

Every failure raised by the geometry and routing layers is an AppException
carrying one of the ErrorCode values. The HTTP layer renders it as the
standard error body; the sentinel boundary flattens it to -1 / -2.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Routing error taxonomy."""
    ENGINE_NOT_LOADED = "ENGINE_NOT_LOADED"
    GEOMETRY_DECODE_ERROR = "GEOMETRY_DECODE_ERROR"
    ENGINE_REQUEST_ERROR = "ENGINE_REQUEST_ERROR"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"


# Boundary sentinels
SENTINEL_ERROR = -1
SENTINEL_NOT_LOADED = -2


class ErrorDetail(BaseModel):
    """Standardized error response format."""
    code: str
    message: str
    status_code: int
    timestamp: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Wrapper for error responses."""
    error: ErrorDetail


# =============================================================================
# Base Exception Classes
# =============================================================================

class AppException(Exception):
    """Base exception for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message or self.message
        self.details = details
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert exception to standardized error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.error_code,
                message=self.message,
                status_code=self.status_code,
                timestamp=datetime.utcnow().isoformat() + "Z",
                request_id=request_id,
                details=self.details,
            )
        )


class ValidationException(AppException):
    """Invalid input data."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    message = "Invalid input data"


# =============================================================================
# Routing Exceptions
# =============================================================================

class GeometryDecodeException(AppException):
    """A geometry could not be reduced to a valid coordinate."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = ErrorCode.GEOMETRY_DECODE_ERROR.value
    message = "Could not extract a coordinate from geometry"


class EngineRequestException(AppException):
    """The engine rejected the request or returned an unusable response."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = ErrorCode.ENGINE_REQUEST_ERROR.value
    message = "Routing engine request failed"


class EngineNotLoadedException(AppException):
    """No engine is loaded for the requested mode."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = ErrorCode.ENGINE_NOT_LOADED.value
    message = "Valhalla router not loaded"

    def __init__(self, mode: Optional[str] = None):
        super().__init__(
            message=f"Valhalla router not loaded for mode '{mode}'" if mode else None,
            details={"mode": mode} if mode else None,
        )


class EngineLoadException(AppException):
    """The engine configuration could not be resolved or reached."""
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "ENGINE_LOAD_FAILED"
    message = "Failed to load routing engine"


class ConfigurationException(AppException):
    """Configuration error - should fail at startup."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "CONFIGURATION_ERROR"
    message = "Application configuration error"


def sentinel_for(exc: Exception) -> int:
    """Map an exception to its boundary sentinel."""
    if isinstance(exc, EngineNotLoadedException):
        return SENTINEL_NOT_LOADED
    return SENTINEL_ERROR


# =============================================================================
# Exception Handler Registration
# =============================================================================

def get_request_id(request: Request) -> str:
    """Extract or generate request ID."""
    return getattr(request.state, "request_id", None) or str(uuid4())


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle all application exceptions with standardized format."""
    request_id = get_request_id(request)
    response = exc.to_response(request_id=request_id)

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
        headers={"X-Request-ID": request_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = get_request_id(request)

    logger.exception(f"Unhandled exception: {exc}", extra={"request_id": request_id})

    error = ErrorResponse(
        error=ErrorDetail(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
            status_code=500,
            timestamp=datetime.utcnow().isoformat() + "Z",
            request_id=request_id,
        )
    )

    return JSONResponse(
        status_code=500,
        content=error.model_dump(),
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
