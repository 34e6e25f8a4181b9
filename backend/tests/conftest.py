"""
Pytest configuration and fixtures.
"""
import struct
from typing import Callable, Optional, Union

import polyline
import pytest

from travel_time.core.exceptions import EngineRequestException
from travel_time.services.engine.base import EngineContext, RoutingEngine
from travel_time.services.routing.orchestrator import RoutingOrchestrator

FAKE_TARGET = "http://valhalla.test:8002"

CannedResponse = Union[dict, list, Exception, Callable[[dict], Union[dict, list]]]


class FakeEngine(RoutingEngine):
    """Scripted engine returning canned Valhalla JSON per action."""

    def __init__(self, responses: Optional[dict[str, CannedResponse]] = None, ready: bool = True):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, dict]] = []
        self.ready = ready
        self.closed = False

    def request(self, action: str, payload: dict):
        self.calls.append((action, payload))
        response = self.responses.get(action)
        if response is None:
            raise EngineRequestException(message=f"No canned response for {action}")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(payload)
        return response

    def is_ready(self) -> bool:
        return self.ready and not self.closed

    def close(self) -> None:
        self.closed = True


def route_response(length_km: float, time_s: float, legs: list[list[tuple[float, float]]], units: str = "kilometers") -> dict:
    """Valhalla /route body with polyline6 leg shapes from (lat, lon) points."""
    return {
        "trip": {
            "units": units,
            "status": 0,
            "summary": {"length": length_km, "time": time_s},
            "legs": [{"shape": polyline.encode(points, 6)} for points in legs],
        }
    }


def wkb_point(lon: float, lat: float, little_endian: bool = True, srid: Optional[int] = None) -> bytes:
    order = "<" if little_endian else ">"
    geom_type = 1 | (0x20000000 if srid is not None else 0)
    data = (b"\x01" if little_endian else b"\x00") + struct.pack(order + "I", geom_type)
    if srid is not None:
        data += struct.pack(order + "I", srid)
    return data + struct.pack(order + "dd", lon, lat)


def columnar_point(lon: float, lat: float) -> bytes:
    """Internal columnar point blob: 12-byte header, LE type at 12, lon/lat at 16/24."""
    return bytes(12) + struct.pack("<I", 1) + struct.pack("<dd", lon, lat)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def engine_context(fake_engine) -> EngineContext:
    """Context with the fake engine loaded for auto and pedestrian."""
    context = EngineContext(factory=lambda target: fake_engine)
    context.load(FAKE_TARGET, "auto")
    context.load(FAKE_TARGET, "pedestrian")
    return context


@pytest.fixture
def empty_context() -> EngineContext:
    """Context with nothing loaded."""
    return EngineContext(factory=lambda target: FakeEngine())


@pytest.fixture
def orchestrator(engine_context) -> RoutingOrchestrator:
    return RoutingOrchestrator(engine_context)
