"""
Tests for the engine context and the Valhalla HTTP client.
"""
import json
import threading

import httpx
import pytest

from travel_time.core.exceptions import (
    EngineLoadException,
    EngineNotLoadedException,
    EngineRequestException,
)
from travel_time.services.engine.base import EngineContext
from travel_time.services.engine.valhalla_client import (
    ValhallaHTTPEngine,
    base_url_from_target,
    listen_to_base_url,
    resolve_config_path,
)

from conftest import FAKE_TARGET, FakeEngine


class TestEngineContext:
    """Tests for EngineContext."""

    def test_not_loaded_initially(self, empty_context):
        assert not empty_context.is_loaded("auto")
        assert empty_context.status() == {"loaded": False, "target": None, "modes": []}

    def test_session_requires_load(self, empty_context):
        with pytest.raises(EngineNotLoadedException) as exc_info:
            with empty_context.session("auto"):
                pass
        assert exc_info.value.details == {"mode": "auto"}

    def test_session_requires_mode(self, engine_context):
        with pytest.raises(EngineNotLoadedException):
            with engine_context.session("bicycle"):
                pass

    def test_session_requires_ready_engine(self, engine_context, fake_engine):
        fake_engine.ready = False
        with pytest.raises(EngineNotLoadedException):
            with engine_context.session("auto"):
                pass

    def test_same_target_adds_mode(self, engine_context, fake_engine):
        engine_context.load(FAKE_TARGET, "bicycle")
        assert engine_context.loaded_modes == ["auto", "bicycle", "pedestrian"]
        assert not fake_engine.closed

    def test_new_target_replaces_engine(self):
        engines = []

        def factory(target):
            engines.append(FakeEngine())
            return engines[-1]

        context = EngineContext(factory=factory)
        context.load("http://a:8002", "auto")
        context.load("http://a:8002", "bicycle")
        context.load("http://b:8002", "pedestrian")

        assert len(engines) == 2
        assert engines[0].closed
        assert context.target == "http://b:8002"
        assert context.loaded_modes == ["pedestrian"]

    def test_load_not_ready_fails(self):
        engine = FakeEngine(ready=False)
        context = EngineContext(factory=lambda target: engine)
        with pytest.raises(EngineLoadException):
            context.load(FAKE_TARGET, "auto")
        assert engine.closed
        assert not context.is_loaded()

    def test_unload_mode_then_all(self, engine_context, fake_engine):
        engine_context.unload("auto")
        assert not engine_context.is_loaded("auto")
        assert engine_context.is_loaded("pedestrian")

        engine_context.unload("pedestrian")
        assert not engine_context.is_loaded()
        assert fake_engine.closed

    def test_lock_released_after_error(self, engine_context):
        with pytest.raises(RuntimeError):
            with engine_context.session("auto"):
                raise RuntimeError("boom")
        with engine_context.session("auto") as engine:
            assert engine is not None

    def test_sessions_serialized(self, engine_context):
        """A second session waits for the first to finish."""
        order = []
        entered = threading.Event()
        release = threading.Event()

        def first():
            with engine_context.session("auto"):
                entered.set()
                release.wait(timeout=5)
                order.append("first")

        def second():
            entered.wait(timeout=5)
            with engine_context.session("auto"):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        entered.wait(timeout=5)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert order == ["first", "second"]


class TestConfigResolution:
    """Load targets: URLs, directories and valhalla.json files."""

    def test_url_passthrough(self):
        assert base_url_from_target("http://valhalla:8002/") == "http://valhalla:8002"

    def test_directory_gets_config_filename(self, tmp_path):
        assert resolve_config_path(str(tmp_path)) == tmp_path / "valhalla.json"

    def test_json_path_kept(self, tmp_path):
        path = tmp_path / "custom.json"
        assert resolve_config_path(str(path)) == path

    def test_listen_wildcard(self):
        assert listen_to_base_url("tcp://*:8002", host="routing") == "http://routing:8002"

    def test_listen_explicit_host(self):
        assert listen_to_base_url("tcp://10.0.0.5:9000") == "http://10.0.0.5:9000"

    def test_listen_invalid(self):
        with pytest.raises(EngineLoadException):
            listen_to_base_url("ipc:///tmp/valhalla")

    def test_config_file(self, tmp_path):
        (tmp_path / "valhalla.json").write_text(
            json.dumps({"httpd": {"service": {"listen": "tcp://127.0.0.1:8123"}}})
        )
        assert base_url_from_target(str(tmp_path)) == "http://127.0.0.1:8123"

    def test_missing_config(self, tmp_path):
        with pytest.raises(EngineLoadException):
            base_url_from_target(str(tmp_path / "nowhere"))

    def test_invalid_config(self, tmp_path):
        (tmp_path / "valhalla.json").write_text("{not json")
        with pytest.raises(EngineLoadException):
            base_url_from_target(str(tmp_path))


class TestValhallaHTTPEngine:
    """ValhallaHTTPEngine against an httpx mock transport."""

    @staticmethod
    def make_engine(handler) -> ValhallaHTTPEngine:
        return ValhallaHTTPEngine("http://valhalla.test:8002", transport=httpx.MockTransport(handler))

    def test_check_uses_status(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"version": "3.4.0"})

        engine = self.make_engine(handler)
        assert not engine.is_ready()
        assert engine.check()
        assert engine.is_ready()
        assert seen == [("GET", "/status")]

    def test_check_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        engine = self.make_engine(handler)
        assert not engine.check()

    def test_request_posts_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/route"
            body = json.loads(request.content)
            assert body["costing"] == "auto"
            return httpx.Response(200, json={"trip": {"summary": {"length": 1.0, "time": 60}}})

        engine = self.make_engine(handler)
        data = engine.request("route", {"costing": "auto", "locations": []})
        assert data["trip"]["summary"]["time"] == 60

    def test_engine_error_body(self):
        def handler(request):
            return httpx.Response(400, json={"error_code": 442, "error": "No path could be found for input", "status_code": 400})

        engine = self.make_engine(handler)
        with pytest.raises(EngineRequestException) as exc_info:
            engine.request("route", {})
        assert exc_info.value.message == "No path could be found for input"
        assert exc_info.value.details["engine_error_code"] == 442

    def test_server_error_without_json(self):
        engine = self.make_engine(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(EngineRequestException):
            engine.request("route", {})

    def test_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        engine = self.make_engine(handler)
        with pytest.raises(EngineRequestException):
            engine.request("sources_to_targets", {})

    def test_closed(self):
        engine = self.make_engine(lambda request: httpx.Response(200, json={}))
        engine.check()
        engine.close()
        assert not engine.is_ready()
        with pytest.raises(EngineRequestException):
            engine.request("route", {})
