"""Tests for JSON log formatting and correlation ids."""

import json
import logging

from app.logging_config import _JsonFormatter, bind_correlation_id, get_correlation_id


def _record(msg="hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    def test_bound_only_inside_block(self):
        assert get_correlation_id() == ""
        with bind_correlation_id(prefix="cycle-") as cid:
            assert cid.startswith("cycle-")
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""

    def test_explicit_value(self):
        with bind_correlation_id("req-1") as cid:
            assert cid == "req-1"

    def test_nested_blocks_restore_outer_id(self):
        with bind_correlation_id("outer"):
            with bind_correlation_id("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"


class TestJsonFormatter:
    def test_emits_single_json_object_with_extras(self):
        line = _JsonFormatter().format(_record(batch_id="batch_1"))
        payload = json.loads(line)
        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "app.test"
        assert payload["batch_id"] == "batch_1"
        assert "correlation_id" not in payload

    def test_includes_bound_correlation_id(self):
        with bind_correlation_id("cycle-abc"):
            payload = json.loads(_JsonFormatter().format(_record()))
        assert payload["correlation_id"] == "cycle-abc"
