"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Lifecycle
    tree_loaded = "tree_loaded"
    tree_bootstrapped = "tree_bootstrapped"
    tree_load_failed = "tree_load_failed"
    handlers_registered = "handlers_registered"
    handlers_unsupported = "handlers_unsupported"

    # User-initiated structure changes
    folder_created = "folder_created"
    sheet_created = "sheet_created"
    sheet_create_failed = "sheet_create_failed"
    node_renamed = "node_renamed"
    rename_rejected = "rename_rejected"
    rename_failed = "rename_failed"
    nodes_deleted = "nodes_deleted"
    sheet_delete_failed = "sheet_delete_failed"
    node_moved = "node_moved"
    nodes_copied = "nodes_copied"
    nodes_pasted = "nodes_pasted"
    sheet_duplicate_failed = "sheet_duplicate_failed"
    sheets_hidden = "sheets_hidden"
    sheet_activated = "sheet_activated"
    intent_failed = "intent_failed"

    # Host notifications / reconciliation
    host_sheet_added = "host_sheet_added"
    host_sheet_renamed = "host_sheet_renamed"
    host_sheet_deleted = "host_sheet_deleted"
    orphan_rename_applied = "orphan_rename_applied"
    orphan_rename_ambiguous = "orphan_rename_ambiguous"
    reconcile_completed = "reconcile_completed"
    notification_failed = "notification_failed"

    # Persistence
    save_completed = "save_completed"
    save_failed = "save_failed"
    save_oversize = "save_oversize"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

HOST_UNAVAILABLE = "host_unavailable"
NAME_COLLISION = "name_collision"
STRUCTURAL_ERROR = "structural_error"
PERSISTENCE_FAILURE = "persistence_failure"
PARTIAL_BATCH_FAILURE = "partial_batch_failure"
PERSISTED_TREE_INVALID = "persisted_tree_invalid"


# ---------------------------------------------------------------------------
# Context sanitising
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256
_MAX_LIST_ITEMS = 50


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* safe to write to the log.

    Rules:
    - String values longer than 256 chars are truncated (serialized tree
      blobs can be megabytes).
    - Lists longer than 50 items keep the first 50 plus a count marker.
    - Nested dicts are processed recursively.
    """
    return _redact_dict(context)


def _redact_dict(d: dict[str, Any]) -> dict[str, Any]:
    return {k: _redact_value(v) for k, v in d.items()}


def _redact_value(v: Any) -> Any:
    if isinstance(v, dict):
        return _redact_dict(v)
    if isinstance(v, (list, tuple)):
        items = [_redact_value(item) for item in v[:_MAX_LIST_ITEMS]]
        if len(v) > _MAX_LIST_ITEMS:
            items.append(f"...[{len(v) - _MAX_LIST_ITEMS} more]")
        return items
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SheetTreeEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``set_log_dir`` is called.
_sink: Any = None  # EventSink | None
_session_id: str | None = None


def set_log_dir(
    log_dir: Any,
    *,
    session_id: str | None = None,
    fsync: bool = False,
    tail_bytes: int | None = None,
) -> None:
    """Configure the module-level event sink.

    This should be called early in a CLI command or server startup.  If
    it is never called, ``emit()`` silently discards events.  When
    *session_id* is given, events are also appended to a per-session log.
    """
    global _sink, _session_id
    from pathlib import Path

    from sheettree.logging.sink import EventSink

    _sink = EventSink(Path(log_dir), fsync=fsync, tail_bytes=tail_bytes)
    _session_id = session_id


def reset() -> None:
    """Drop the configured sink (events are discarded afterwards)."""
    global _sink, _session_id
    _sink = None
    _session_id = None


def get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[sheettree] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: SheetTreeEvent) -> None:
    """Write an event to the global log and the session log, if any.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": redact_context(event.context)})
        sink.write(event, session_id=_session_id)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        SheetTreeEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        SheetTreeEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        SheetTreeEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
