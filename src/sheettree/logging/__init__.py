"""Structured event logging for sheettree.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from sheettree.logging.events import (
    EventLevel,
    EventType,
    SheetTreeEvent,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    redact_context,
    reset,
    set_log_dir,
)
from sheettree.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "SheetTreeEvent",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_sink",
    "redact_context",
    "reset",
    "set_log_dir",
]
