"""
Valhalla service client.

Talks to a running Valhalla HTTP service (valhalla_service / Docker image)
through its JSON actions: POST {base_url}/{action} with the request body,
JSON response back. No request is retried; a failed call surfaces as
EngineRequestException to the orchestrator.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from travel_time.core.config import settings
from travel_time.core.exceptions import EngineLoadException, EngineRequestException
from travel_time.core.metrics import track_engine_request
from travel_time.services.engine.base import EngineResponse, RoutingEngine

logger = logging.getLogger(__name__)

DEFAULT_LISTEN = "tcp://*:8002"
CONFIG_FILENAME = "valhalla.json"
WILDCARD_HOSTS = ("*", "0.0.0.0", "")


def resolve_config_path(target: str) -> Path:
    """A path not ending in .json is a tile/config directory holding valhalla.json."""
    path = Path(target)
    if path.suffix.lower() != ".json":
        path = path / CONFIG_FILENAME
    return path


def listen_to_base_url(listen: str, host: Optional[str] = None) -> str:
    """
    Map an httpd listen address to a client URL.

    "tcp://*:8002" -> "http://<VALHALLA_HOST>:8002"
    """
    address = listen.split("://", 1)[-1]
    bind_host, _, port = address.rpartition(":")
    if not port.isdigit():
        raise EngineLoadException(
            message=f"Unsupported httpd listen address: {listen}",
            details={"listen": listen},
        )
    if bind_host in WILDCARD_HOSTS:
        bind_host = host or settings.VALHALLA_HOST
    return f"http://{bind_host}:{port}"


def base_url_from_target(target: str) -> str:
    """Resolve a load target (service URL, config directory or file) to a base URL."""
    if target.startswith(("http://", "https://")):
        return target.rstrip("/")

    config_path = resolve_config_path(target)
    if not config_path.is_file():
        raise EngineLoadException(
            message=f"Valhalla config not found: {config_path}",
            details={"config_path": str(config_path)},
        )
    try:
        config = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise EngineLoadException(
            message=f"Cannot read Valhalla config {config_path}: {e}",
            details={"config_path": str(config_path)},
        )

    listen = config.get("httpd", {}).get("service", {}).get("listen", DEFAULT_LISTEN)
    return listen_to_base_url(listen)


class ValhallaHTTPEngine(RoutingEngine):
    """
    Synchronous Valhalla client.

    Calls are made while the EngineContext lock is held, so one pooled
    httpx.Client is shared by every request.
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or httpx.Timeout(
            settings.VALHALLA_TIMEOUT_SECONDS,
            connect=settings.VALHALLA_CONNECT_TIMEOUT_SECONDS,
        )
        self._client: Optional[httpx.Client] = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )
        self._ready = False

    @classmethod
    def from_config_path(cls, target: str, **kwargs) -> "ValhallaHTTPEngine":
        return cls(base_url_from_target(target), **kwargs)

    def check(self) -> bool:
        """Probe GET /status; the engine is ready once it answers 200."""
        if self._client is None:
            return False
        try:
            response = self._client.get("/status")
            self._ready = response.status_code == 200
        except httpx.RequestError as e:
            logger.warning(f"Valhalla status probe failed at {self.base_url}: {e}")
            self._ready = False
        return self._ready

    def is_ready(self) -> bool:
        return self._client is not None and self._ready

    def request(self, action: str, payload: dict) -> EngineResponse:
        """
        POST one action.

        Raises:
            EngineRequestException: engine error body, HTTP error or network failure
        """
        if self._client is None:
            raise EngineRequestException(message="Valhalla client is closed")

        with track_engine_request(action):
            try:
                response = self._client.post(f"/{action}", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                body = _error_body(e.response)
                logger.warning(
                    f"Valhalla {action} HTTP error {e.response.status_code}: "
                    f"{body.get('error', e.response.text[:200])}"
                )
                raise EngineRequestException(
                    message=body.get("error") or f"Valhalla {action} failed with HTTP {e.response.status_code}",
                    details={
                        "action": action,
                        "status_code": e.response.status_code,
                        "engine_error_code": body.get("error_code"),
                    },
                )
            except httpx.RequestError as e:
                logger.warning(f"Valhalla {action} network error: {e}")
                raise EngineRequestException(
                    message=f"Valhalla {action} request failed: {e}",
                    details={"action": action},
                )
            except ValueError as e:
                raise EngineRequestException(
                    message=f"Valhalla {action} returned invalid JSON",
                    details={"action": action, "error": str(e)},
                )

        if isinstance(data, dict) and "error_code" in data and "error" in data:
            raise EngineRequestException(
                message=str(data["error"]),
                details={"action": action, "engine_error_code": data["error_code"]},
            )
        return data

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self._ready = False


def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
