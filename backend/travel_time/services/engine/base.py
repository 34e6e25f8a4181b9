"""
Routing engine interface and the context that owns it.

Engine operations are serialized: every call that touches the engine
holds the context lock for the whole invocation, from request
construction to response parsing.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Union

from travel_time.core.exceptions import EngineLoadException, EngineNotLoadedException
from travel_time.core.metrics import update_engine_loaded

logger = logging.getLogger(__name__)

EngineResponse = Union[dict, list]


class RoutingEngine(ABC):
    """
    Request/response contract of the routing engine.

    `request` takes a Valhalla action name ("route", "sources_to_targets",
    "isochrone", "locate", "status", ...) and its JSON body, and returns
    the decoded JSON response. Domain failures raise EngineRequestException.
    """

    @abstractmethod
    def request(self, action: str, payload: dict) -> EngineResponse:
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    def check(self) -> bool:
        """Load-time readiness probe; may contact the engine."""
        return self.is_ready()

    def close(self) -> None:
        pass


EngineFactory = Callable[[str], RoutingEngine]


class EngineContext:
    """
    Owns the engine handle, the set of loaded travel modes and the lock.

    One engine serves every mode; a mode counts as loaded once `load` was
    called for it against the current target. Loading a different target
    replaces the engine and forgets the previously loaded modes.
    """

    def __init__(self, factory: Optional[EngineFactory] = None):
        self._factory = factory
        self._engine: Optional[RoutingEngine] = None
        self._target: Optional[str] = None
        self._modes: set[str] = set()
        self._lock = threading.Lock()

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def loaded_modes(self) -> list[str]:
        return sorted(self._modes)

    def _default_factory(self, target: str) -> RoutingEngine:
        from travel_time.services.engine.valhalla_client import ValhallaHTTPEngine

        return ValhallaHTTPEngine.from_config_path(target)

    def load(self, target: str, mode: str) -> None:
        """
        Load `target` (URL, config directory or valhalla.json) for `mode`.

        Re-loading the current target only registers the mode.
        """
        with self._lock:
            if self._engine is not None and target == self._target:
                self._modes.add(mode)
                update_engine_loaded(mode, True)
                logger.info(f"Engine already loaded from {target}; mode '{mode}' registered")
                return

            factory = self._factory or self._default_factory
            engine = factory(target)
            if not engine.check():
                engine.close()
                raise EngineLoadException(
                    message=f"Routing engine at {target} is not ready",
                    details={"target": target},
                )

            self._release()
            self._engine = engine
            self._target = target
            self._modes = {mode}
            update_engine_loaded(mode, True)
            logger.info(f"Engine loaded from {target} for mode '{mode}'")

    def unload(self, mode: Optional[str] = None) -> None:
        """Forget one mode, or release the engine entirely when mode is None."""
        with self._lock:
            if mode is not None:
                self._modes.discard(mode)
                update_engine_loaded(mode, False)
                if self._modes:
                    return
            self._release()

    def _release(self) -> None:
        for mode in self._modes:
            update_engine_loaded(mode, False)
        if self._engine is not None:
            self._engine.close()
            logger.info(f"Engine released ({self._target})")
        self._engine = None
        self._target = None
        self._modes = set()

    def is_loaded(self, mode: Optional[str] = None) -> bool:
        if self._engine is None:
            return False
        return mode is None or mode in self._modes

    @contextmanager
    def session(self, mode: Optional[str] = None) -> Iterator[RoutingEngine]:
        """
        Hold the lock and yield the engine for `mode`.

        Raises EngineNotLoadedException (lock released) when the engine is
        absent, the mode was never loaded, or the engine is not ready.
        """
        with self._lock:
            if not self.is_loaded(mode):
                raise EngineNotLoadedException(mode)
            if not self._engine.is_ready():
                raise EngineNotLoadedException(mode)
            yield self._engine

    def status(self) -> dict[str, Any]:
        return {
            "loaded": self._engine is not None,
            "target": self._target,
            "modes": self.loaded_modes,
        }


engine_context = EngineContext()
