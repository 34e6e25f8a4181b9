"""
Tests for structured logging.
"""
import json
import logging

from travel_time.core.logging import (
    HumanFormatter,
    JSONFormatter,
    mode_var,
    operation_var,
    request_id_var,
    routing_context,
)


def make_record(message: str = "engine call", **extra) -> logging.LogRecord:
    record = logging.LogRecord("travel_time.test", logging.INFO, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRoutingContext:
    def test_sets_and_resets(self):
        with routing_context("route", "auto"):
            assert operation_var.get() == "route"
            assert mode_var.get() == "auto"
        assert operation_var.get() == ""
        assert mode_var.get() == ""

    def test_reset_after_error(self):
        try:
            with routing_context("snap", "pedestrian"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert operation_var.get() == ""


class TestJSONFormatter:
    def test_context_fields(self):
        with routing_context("matrix", "bicycle"):
            data = json.loads(JSONFormatter().format(make_record()))

        assert data["message"] == "engine call"
        assert data["operation"] == "matrix"
        assert data["mode"] == "bicycle"
        assert "request_id" not in data

    def test_extra_fields(self):
        data = json.loads(JSONFormatter().format(make_record(status_code=200, duration_ms=1.5)))
        assert data["status_code"] == 200
        assert data["duration_ms"] == 1.5

    def test_request_id(self):
        token = request_id_var.set("abc-123")
        try:
            data = json.loads(JSONFormatter().format(make_record()))
        finally:
            request_id_var.reset(token)
        assert data["request_id"] == "abc-123"


class TestHumanFormatter:
    def test_tags(self):
        with routing_context("route", "auto"):
            line = HumanFormatter().format(make_record("truncated"))
        assert "[route:auto]" in line
        assert line.endswith("truncated")
