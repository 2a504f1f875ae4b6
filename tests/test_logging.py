"""Tests for the sheettree structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    return tmp_path / "logs"


@pytest.fixture
def sink(log_dir: Path):
    from sheettree.logging.sink import EventSink

    return EventSink(log_dir)


@pytest.fixture(autouse=True)
def _reset_sink():
    yield
    from sheettree.logging import reset

    reset()


def _event(message: str = "hello", level: str = "info", event_type: str = "tree_loaded"):
    from sheettree.logging.events import EventLevel, EventType, SheetTreeEvent

    return SheetTreeEvent(level=EventLevel(level), event_type=EventType(event_type), message=message)


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestSheetTreeEvent:
    def test_event_defaults(self):
        evt = _event()
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "tree_loaded"
        assert evt.context == {}
        assert evt.error_code is None

    def test_event_serialization(self):
        data = json.loads(_event("x").model_dump_json())
        assert set(data) == {"schema_version", "ts", "level", "event_type", "context", "message", "error_code"}

    def test_error_codes_are_strings(self):
        from sheettree.logging import events

        for name in (
            "HOST_UNAVAILABLE",
            "NAME_COLLISION",
            "STRUCTURAL_ERROR",
            "PERSISTENCE_FAILURE",
            "PARTIAL_BATCH_FAILURE",
            "PERSISTED_TREE_INVALID",
        ):
            assert isinstance(getattr(events, name), str)


class TestRedactContext:
    def test_long_strings_truncated(self):
        from sheettree.logging import redact_context

        out = redact_context({"blob": "x" * 1000})
        assert len(out["blob"]) < 300
        assert out["blob"].endswith("...[truncated]")

    def test_long_lists_capped(self):
        from sheettree.logging import redact_context

        out = redact_context({"names": [str(i) for i in range(60)]})
        assert len(out["names"]) == 51
        assert out["names"][-1] == "...[10 more]"

    def test_nested(self):
        from sheettree.logging import redact_context

        out = redact_context({"outer": {"inner": "y" * 500}, "n": 3})
        assert out["outer"]["inner"].endswith("...[truncated]")
        assert out["n"] == 3


# ---------------------------------------------------------------------------
# B) Sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def test_write_creates_global_log(self, sink, log_dir):
        sink.write(_event("first"))
        lines = (log_dir / "events.ndjson").read_text().strip().splitlines()
        assert len(lines) == 1
        parsed = json.loads(lines[0])
        assert parsed["message"] == "first"
        assert parsed["level"] == "info"

    def test_write_creates_session_log(self, sink, log_dir):
        sink.write(_event(), session_id="abc123")
        assert (log_dir / "sessions" / "abc123.ndjson").exists()

    def test_unsafe_session_id_ignored(self, sink, log_dir):
        sink.write(_event(), session_id="../escape")
        assert list((log_dir / "sessions").iterdir()) == []

    def test_read_global_most_recent_first(self, sink):
        for i in range(3):
            sink.write(_event(f"m{i}"))
        assert [e["message"] for e in sink.read_global()] == ["m2", "m1", "m0"]

    def test_read_global_filters(self, sink):
        sink.write(_event("a", level="info", event_type="save_completed"))
        sink.write(_event("b", level="warning", event_type="save_failed"))
        sink.write(_event("c", level="warning", event_type="save_oversize"))
        assert [e["message"] for e in sink.read_global(level="warning")] == ["c", "b"]
        assert [e["message"] for e in sink.read_global(event_type="save_completed")] == ["a"]
        assert len(sink.read_global(limit=1)) == 1

    def test_read_session_log_oldest_first(self, sink):
        sink.write(_event("one"), session_id="s1")
        sink.write(_event("two"), session_id="s1")
        assert [e["message"] for e in sink.read_session_log("s1")] == ["one", "two"]
        assert sink.read_session_log("missing") == []

    def test_tail_read_skips_partial_first_line(self, log_dir):
        from sheettree.logging.sink import EventSink

        small = EventSink(log_dir, tail_bytes=400)
        for i in range(20):
            small.write(_event(f"event number {i}"))
        events = small.read_global()
        assert events
        assert events[0]["message"] == "event number 19"
        assert len(events) < 20


# ---------------------------------------------------------------------------
# C) Emit helpers
# ---------------------------------------------------------------------------


class TestEmitHelpers:
    def test_emit_without_log_dir_is_noop(self):
        from sheettree.logging import EventType, emit_info, get_sink

        assert get_sink() is None
        emit_info(EventType.tree_loaded, "discarded")

    def test_set_log_dir_enables_logging(self, log_dir):
        from sheettree.logging import EventType, emit_info, set_log_dir

        set_log_dir(log_dir, session_id="sess")
        emit_info(EventType.tree_loaded, "hello from test", {"nodes": 3})

        lines = (log_dir / "events.ndjson").read_text().strip().splitlines()
        assert len(lines) == 1
        parsed = json.loads(lines[0])
        assert parsed["context"] == {"nodes": 3}
        assert (log_dir / "sessions" / "sess.ndjson").exists()

    def test_emit_error_sets_error_code(self, log_dir):
        from sheettree.logging import EventType, emit_error, set_log_dir

        set_log_dir(log_dir)
        emit_error(EventType.intent_failed, "boom", error_code="host_unavailable")
        parsed = json.loads((log_dir / "events.ndjson").read_text().strip())
        assert parsed["error_code"] == "host_unavailable"
        assert parsed["level"] == "error"

    def test_emit_redacts_context(self, log_dir):
        from sheettree.logging import EventType, emit_warning, set_log_dir

        set_log_dir(log_dir)
        emit_warning(EventType.save_oversize, "big", {"blob": "z" * 2000})
        parsed = json.loads((log_dir / "events.ndjson").read_text().strip())
        assert parsed["level"] == "warning"
        assert parsed["context"]["blob"].endswith("...[truncated]")

    def test_emit_never_raises(self, log_dir, monkeypatch):
        from sheettree.logging import EventType, emit_info, get_sink, set_log_dir

        set_log_dir(log_dir)

        def explode(*args, **kwargs):
            raise OSError("disk gone")

        monkeypatch.setattr(get_sink(), "write", explode)
        emit_info(EventType.tree_loaded, "should not raise")
