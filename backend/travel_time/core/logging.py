"""
Structured logging configuration.

Every record carries the HTTP request ID and, while a routing operation
holds the engine, the operation name and travel mode. Production logs are
JSON lines; DEBUG mode switches to a human-readable format.
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from travel_time.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
operation_var: ContextVar[str] = ContextVar("operation", default="")
mode_var: ContextVar[str] = ContextVar("mode", default="")

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

# Probe endpoints logged at DEBUG only
QUIET_PATHS = ("/health", settings.METRICS_PATH)


@contextmanager
def routing_context(operation: str, mode: Optional[str]) -> Iterator[None]:
    """Tag log records emitted inside the block with operation and mode."""
    op_token = operation_var.set(operation)
    mode_token = mode_var.set(mode or "")
    try:
        yield
    finally:
        operation_var.reset(op_token)
        mode_var.reset(mode_token)


def _context_fields() -> dict:
    fields = {
        "request_id": request_id_var.get(),
        "operation": operation_var.get(),
        "mode": mode_var.get(),
    }
    return {k: v for k, v in fields.items() if v}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(_context_fields())

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in payload:
                payload[key] = value

        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line development format: time, level, [request] [operation:mode], origin, message."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _context_fields()
        tags = ""
        if "request_id" in fields:
            tags += f"[{fields['request_id'][:8]}]"
        if "operation" in fields:
            tags += f"[{fields['operation']}:{fields.get('mode', '-')}]"

        timestamp = datetime.utcnow().strftime("%H:%M:%S.%f")[:-3]
        line = f"{timestamp} {record.levelname:8} {tags:30} {record.name} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        level: Level for the travel_time loggers (DEBUG, INFO, WARNING, ERROR)
        json_format: Emit JSON lines instead of the human format
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else HumanFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    levels = {
        "travel_time": level,
        "uvicorn": "INFO",
        "uvicorn.access": "WARNING",
        # Engine round-trips are already timed by the engine metrics
        "httpx": "WARNING",
        "httpcore": "WARNING",
    }
    for name, name_level in levels.items():
        logging.getLogger(name).setLevel(getattr(logging, name_level.upper()))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request ID (or reuses X-Request-ID), logs completion with
    timing, and echoes the ID on the response.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        request.state.request_id = request_id

        logger = logging.getLogger("travel_time.requests")
        path = request.url.path
        quiet = path.endswith(QUIET_PATHS)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{request.method} {path} raised")
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            f"{request.method} {path} -> {response.status_code} in {duration_ms}ms",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_ip": request.client.host if request.client else None,
            },
        )

        response.headers["X-Request-ID"] = request_id
        return response
