"""
Tests for the sentinel-code boundary.
"""
import struct

import numpy as np
import pytest

from travel_time import boundary
from travel_time.core.exceptions import (
    SENTINEL_ERROR,
    SENTINEL_NOT_LOADED,
    EngineRequestException,
)
from travel_time.services.geometry.encoder import decode_linestring
from travel_time.services.routing.orchestrator import RoutingOrchestrator

from conftest import FAKE_TARGET, FakeEngine, route_response, wkb_point

PATH = [(43.94, 12.45), (43.95, 12.46), (45.46, 9.19)]


@pytest.fixture
def loaded(monkeypatch, engine_context, fake_engine):
    """Boundary wired to the fake engine, loaded for auto and pedestrian."""
    monkeypatch.setattr(boundary, "engine_context", engine_context)
    monkeypatch.setattr(boundary, "routing_orchestrator", RoutingOrchestrator(engine_context))
    return fake_engine


@pytest.fixture
def unloaded(monkeypatch, empty_context):
    monkeypatch.setattr(boundary, "engine_context", empty_context)
    monkeypatch.setattr(boundary, "routing_orchestrator", RoutingOrchestrator(empty_context))
    return empty_context


def route_buffers(max_points: int) -> tuple[np.ndarray, np.ndarray]:
    return np.zeros(3), np.zeros((max_points, 2))


class TestLifecycle:
    def test_load_and_free(self, monkeypatch):
        from travel_time.services.engine.base import EngineContext

        engine = FakeEngine()
        context = EngineContext(factory=lambda target: engine)
        monkeypatch.setattr(boundary, "engine_context", context)

        assert boundary.is_loaded("auto") == 0
        assert boundary.load(FAKE_TARGET, "auto") == 0
        assert boundary.is_loaded("auto") == 1
        boundary.free()
        assert boundary.is_loaded("auto") == 0
        assert engine.closed

    def test_load_failure(self, monkeypatch):
        from travel_time.services.engine.base import EngineContext

        context = EngineContext(factory=lambda target: FakeEngine(ready=False))
        monkeypatch.setattr(boundary, "engine_context", context)
        assert boundary.load(FAKE_TARGET, "auto") == SENTINEL_ERROR

    def test_node_count(self, loaded):
        loaded.responses["status"] = {"node_count": 42}
        assert boundary.node_count("auto") == 42

    def test_node_count_not_loaded(self, unloaded):
        assert boundary.node_count("auto") == SENTINEL_NOT_LOADED


class TestTravelTime:
    def test_seconds(self, loaded):
        loaded.responses["route"] = route_response(2.0, 180.0, [])
        assert boundary.travel_time(43.94, 12.45, 45.46, 9.19, "auto") == 180.0

    def test_not_loaded(self, unloaded):
        assert boundary.travel_time(43.94, 12.45, 45.46, 9.19, "auto") == -2.0

    def test_no_route(self, loaded):
        loaded.responses["route"] = EngineRequestException(message="No path could be found for input")
        assert boundary.travel_time(43.94, 12.45, 45.46, 9.19, "auto") == -1.0

    def test_invalid_coordinate(self, loaded):
        assert boundary.travel_time(100.0, 12.45, 45.46, 9.19, "auto") == -1.0

    def test_batch(self, loaded):
        loaded.responses["route"] = route_response(1.0, 60.0, [])
        results = np.full(4, 99.0)

        written = boundary.batch_travel_time(
            [43.94, 95.0, 43.94], [12.45, 0.0, 12.45], [45.46, 45.46, 45.46], [9.19, 9.19, 9.19], results, 3, "auto"
        )

        assert written == 2
        assert results.tolist() == [60.0, -1.0, 60.0, 99.0]

    def test_batch_malformed_time(self, loaded):
        loaded.responses["route"] = {"trip": {"summary": {"time": "soon"}}}
        results = np.zeros(2)

        written = boundary.batch_travel_time([43.94] * 2, [12.45] * 2, [45.46] * 2, [9.19] * 2, results, 2, "auto")

        assert written == 0
        assert results.tolist() == [-1.0, -1.0]

    def test_batch_buffer_too_small(self, loaded):
        assert boundary.batch_travel_time([1.0] * 3, [1.0] * 3, [1.0] * 3, [1.0] * 3, np.zeros(2), 3) == SENTINEL_ERROR

    def test_batch_not_loaded(self, unloaded):
        results = np.zeros(1)
        assert boundary.batch_travel_time([1.0], [1.0], [2.0], [2.0], results, 1) == SENTINEL_NOT_LOADED


class TestRoute:
    def test_route_fills_buffers(self, loaded):
        loaded.responses["route"] = route_response(3.5, 300.0, [PATH])
        out_result, out_points = route_buffers(10)

        written = boundary.route(43.94, 12.45, 45.46, 9.19, "auto", out_result, out_points, 10)

        assert written == 3
        assert out_result.tolist() == pytest.approx([3500.0, 300.0, 3.0])
        assert out_points[:3].tolist() == [pytest.approx(list(p)) for p in PATH]
        assert out_points[3:].sum() == 0.0

    def test_route_truncates(self, loaded):
        loaded.responses["route"] = route_response(3.5, 300.0, [PATH])
        out_result, out_points = route_buffers(2)

        assert boundary.route(43.94, 12.45, 45.46, 9.19, "auto", out_result, out_points, 2) == 2
        assert out_result[2] == 2.0

    def test_route_not_loaded(self, unloaded):
        out_result, out_points = route_buffers(4)
        assert boundary.route(43.94, 12.45, 45.46, 9.19, "auto", out_result, out_points, 4) == SENTINEL_NOT_LOADED

    def test_route_geom_not_loaded_before_decoding(self, unloaded):
        """An unloaded engine reports -2 even for undecodable endpoints."""
        out_result, out_points = route_buffers(4)
        code = boundary.route_geom("garbage", "POINT(1 2)", "auto", out_result, out_points, 4)
        assert code == SENTINEL_NOT_LOADED

    def test_route_geom_bad_wkt(self, loaded):
        out_result, out_points = route_buffers(4)
        assert boundary.route_geom("garbage", "POINT(1 2)", "auto", out_result, out_points, 4) == SENTINEL_ERROR
        assert loaded.calls == []

    def test_route_wkb(self, loaded):
        loaded.responses["route"] = route_response(1.0, 60.0, [PATH])
        out_result, out_points = route_buffers(5)
        written = boundary.route_wkb(wkb_point(12.45, 43.94), wkb_point(9.19, 45.46), "auto", out_result, out_points, 5)
        assert written == 3

    @pytest.mark.parametrize("max_points", [0, -1])
    def test_invalid_capacity(self, loaded, max_points):
        out_result, out_points = route_buffers(1)
        assert boundary.route(43.94, 12.45, 45.46, 9.19, "auto", out_result, out_points, max_points) == SENTINEL_ERROR

    def test_non_contiguous_buffer(self, loaded):
        out_points = np.zeros((4, 4))[:, ::2]
        assert boundary.route(43.94, 12.45, 45.46, 9.19, "auto", np.zeros(3), out_points, 4) == SENTINEL_ERROR

    def test_read_only_buffer(self, loaded):
        out_result = np.zeros(3)
        out_result.flags.writeable = False
        assert boundary.route(43.94, 12.45, 45.46, 9.19, "auto", out_result, np.zeros(8), 4) == SENTINEL_ERROR


class TestRouteBlob:
    def test_success(self, loaded):
        loaded.responses["route"] = route_response(12.0, 900.0, [PATH])
        distance_km, minutes, wkb = boundary.route_wkb_blob(wkb_point(12.45, 43.94), "POINT(9.19 45.46)", "auto")

        assert distance_km == pytest.approx(12.0)
        assert minutes == pytest.approx(15.0)
        assert struct.unpack_from("<I", wkb, 1)[0] == 2
        assert len(decode_linestring(wkb)) == 3

    def test_failure_is_none(self, loaded):
        assert boundary.route_wkb_blob(b"\xff" * 40, b"\xff" * 40, "auto") is None

    def test_not_loaded_is_none(self, unloaded):
        assert boundary.route_wkb_blob(wkb_point(12.45, 43.94), wkb_point(9.19, 45.46)) is None


class TestSnapAndIsochrone:
    def test_snap(self, loaded):
        loaded.responses["locate"] = [{"edges": [{"correlated_lat": 43.9405, "correlated_lon": 12.4501}]}]
        out = np.zeros(3)

        assert boundary.snap(43.94, 12.45, "auto", out) == 0
        assert out[0] == 43.9405
        assert out[1] == 12.4501
        assert out[2] > 0

    def test_snap_not_loaded(self, unloaded):
        assert boundary.snap(43.94, 12.45, "auto", np.zeros(3)) == SENTINEL_NOT_LOADED

    def test_isochrone(self, loaded):
        ring = [[12.40, 43.90], [12.50, 43.90], [12.50, 44.00], [12.40, 43.90]]
        loaded.responses["isochrone"] = {
            "features": [{"properties": {"contour": 10}, "geometry": {"type": "Polygon", "coordinates": [ring]}}],
        }
        out = np.zeros((3, 3))

        written = boundary.isochrone(43.94, 12.45, 600.0, "auto", out, 3)

        assert written == 3
        assert out[0].tolist() == [43.90, 12.40, 600.0]
        assert out[2].tolist() == [44.00, 12.50, 600.0]

    def test_isochrone_invalid_max_results(self, loaded):
        assert boundary.isochrone(43.94, 12.45, 600.0, "auto", np.zeros(3), 0) == SENTINEL_ERROR

    def test_isochrone_malformed_body(self, loaded):
        loaded.responses["isochrone"] = [{"type": "FeatureCollection"}]
        assert boundary.isochrone(43.94, 12.45, 600.0, "auto", np.zeros((3, 3)), 3) == SENTINEL_ERROR

    def test_snap_out_of_range_result(self, loaded):
        loaded.responses["locate"] = [{"edges": [{"correlated_lat": 123.0, "correlated_lon": 12.45}]}]
        assert boundary.snap(43.94, 12.45, "auto", np.zeros(3)) == SENTINEL_ERROR


class TestRawRequest:
    def test_forward(self, loaded):
        loaded.responses["status"] = {"version": "3.4.0"}
        assert boundary.request("status", "{}") == '{"version": "3.4.0"}'

    def test_unknown_action(self, loaded):
        assert boundary.request("teleport", "{}") is None

    def test_not_loaded(self, unloaded):
        assert boundary.request("status", "{}") is None
