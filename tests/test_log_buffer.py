"""Tests for the in-memory log tail served by the admin API."""

from __future__ import annotations

import logging

import pytest

from inrecord.services import log_buffer
from inrecord.services.log_buffer import LogBuffer, LogEntry, RingBufferHandler


def _entry(level: str, name: str = "inrecord.services", message: str = "m") -> LogEntry:
    return LogEntry(timestamp="2025-01-13T09:00:00+00:00", level=level, logger=name, message=message)


class TestLogBuffer:
    def test_capacity_drops_oldest(self):
        buf = LogBuffer(capacity=3)
        for i in range(5):
            buf.append(_entry("INFO", message=str(i)))
        assert buf.size == 3
        assert [e["message"] for e in buf.get_entries()] == ["2", "3", "4"]

    def test_level_and_logger_filters(self):
        buf = LogBuffer()
        buf.append(_entry("DEBUG"))
        buf.append(_entry("WARNING", "inrecord.api"))
        buf.append(_entry("ERROR", "uvicorn.error"))

        assert [e["level"] for e in buf.get_entries(level="warning")] == ["WARNING", "ERROR"]
        assert [e["logger"] for e in buf.get_entries(logger_filter="inrecord")] == [
            "inrecord.services", "inrecord.api"
        ]

    def test_unknown_level_matches_everything(self):
        buf = LogBuffer()
        buf.append(_entry("DEBUG"))
        assert len(buf.get_entries(level="chatty")) == 1

    def test_tail(self):
        buf = LogBuffer()
        for i in range(10):
            buf.append(_entry("INFO", message=str(i)))
        assert [e["message"] for e in buf.get_entries(tail=2)] == ["8", "9"]


class TestHandler:
    def test_handler_captures_records(self):
        buf = LogBuffer()
        handler = RingBufferHandler(buf, level=logging.INFO)
        log = logging.getLogger("inrecord.test.capture")
        log.addHandler(handler)
        log.setLevel(logging.DEBUG)
        try:
            log.debug("hidden")
            log.info("Proposal %s passed", "p-1")
        finally:
            log.removeHandler(handler)

        (entry,) = buf.get_entries()
        assert entry["message"] == "Proposal p-1 passed"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "inrecord.test.capture"


class TestCaptureLevel:
    @pytest.fixture(autouse=True)
    def _detach(self):
        yield
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, RingBufferHandler):
                root.removeHandler(handler)

    def test_install_is_idempotent(self):
        first = log_buffer.install_handler()
        second = log_buffer.install_handler(level=logging.WARNING)
        assert first is second
        assert log_buffer.get_current_level() == "WARNING"

    def test_set_capture_level(self):
        assert log_buffer.set_capture_level("error") == "ERROR"
        assert log_buffer.get_current_level() == "ERROR"

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            log_buffer.set_capture_level("LOUD")
