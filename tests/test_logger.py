"""Tests for structured logging helpers."""

import json
import logging

from comboarb.utils.logger import ContextLogger, JSONFormatter, get_logger


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _attach(name):
    handler = _Capture()
    target = logging.getLogger(name)
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    return handler, target


class TestContextLogger:
    def test_bound_context_and_kwargs_merged(self):
        handler, target = _attach("comboarb.test.context")
        try:
            log = get_logger("comboarb.test.context").with_context(group_id="binary_0xbtc")
            log.info("Analysis complete", iterations=3)
        finally:
            target.removeHandler(handler)

        record = handler.records[-1]
        assert record.getMessage() == "Analysis complete"
        assert record.extra_data == {"group_id": "binary_0xbtc", "iterations": 3}

    def test_with_context_does_not_mutate_parent(self):
        parent = ContextLogger("comboarb.test.parent", {"a": 1})
        child = parent.with_context(b=2)
        assert child.name == parent.name
        assert parent._context == {"a": 1}
        assert child._context == {"a": 1, "b": 2}

    def test_disabled_level_skipped(self):
        handler, target = _attach("comboarb.test.level")
        target.setLevel(logging.WARNING)
        try:
            get_logger("comboarb.test.level").debug("hidden", x=1)
        finally:
            target.removeHandler(handler)
        assert handler.records == []


class TestJSONFormatter:
    def test_formats_data_and_exception(self):
        handler, target = _attach("comboarb.test.json")
        try:
            log = get_logger("comboarb.test.json")
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                log.exception("Group analysis failed", group_id="g1")
        finally:
            target.removeHandler(handler)

        payload = json.loads(JSONFormatter().format(handler.records[-1]))
        assert payload["level"] == "ERROR"
        assert payload["message"] == "Group analysis failed"
        assert payload["data"] == {"group_id": "g1"}
        assert "RuntimeError: boom" in payload["exception"]
