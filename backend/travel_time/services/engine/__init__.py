"""
Routing engine access.
"""
from travel_time.services.engine.base import EngineContext, RoutingEngine
from travel_time.services.engine.valhalla_client import ValhallaHTTPEngine

__all__ = ["EngineContext", "RoutingEngine", "ValhallaHTTPEngine"]
