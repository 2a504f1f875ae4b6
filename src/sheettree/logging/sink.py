"""Filesystem NDJSON event sink with concurrency-safe appends.

Events are appended as one JSON line per event.  Two log destinations:

- ``<log_dir>/events.ndjson``  -- global event log
- ``<log_dir>/sessions/<session_id>.ndjson`` -- per-session log

Writes use ``json.dumps(sort_keys=True)`` for deterministic output.

Appends hold an exclusive ``fcntl.flock`` and reads a shared one; where
``fcntl`` is missing (Windows) files are not locked.  Reads only look at
the last ``tail_bytes`` of a file.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO

from sheettree.logging.events import SheetTreeEvent

try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False

# Path-component validation: reject anything that could escape the logs dir
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# Default tail-read size (2 MB)
_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024


@contextmanager
def _locked(f: BinaryIO, *, exclusive: bool) -> Iterator[BinaryIO]:
    """Hold an ``flock`` on an open file (no-op without ``fcntl``)."""
    if not _HAS_FCNTL:
        yield f
        return
    fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    try:
        yield f
    finally:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class EventSink:
    """Append-only NDJSON log writer with file locking."""

    def __init__(self, log_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = log_dir
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        (self.logs_dir / "sessions").mkdir(exist_ok=True)

    def write(self, event: SheetTreeEvent, *, session_id: str | None = None) -> None:
        """Append *event* to the global log and optionally a session log."""
        line = json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n"

        self._append(self.logs_dir / "events.ndjson", line)

        if session_id and _SAFE_ID_RE.match(session_id):
            self._append(self.logs_dir / "sessions" / f"{session_id}.ndjson", line)

    # ------------------------------------------------------------------
    # Query helpers (used by API / CLI)
    # ------------------------------------------------------------------

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Read events from the global log, most-recent-first, with filters."""
        limit = min(limit, 2000)
        events = self._read_ndjson(self.logs_dir / "events.ndjson")

        if level:
            events = [e for e in events if e.get("level") == level]
        if event_type:
            events = [e for e in events if e.get("event_type") == event_type]

        events.reverse()
        return events[:limit]

    def read_session_log(self, session_id: str) -> list[dict[str, Any]]:
        """Read all events for a specific session, oldest first."""
        if not _SAFE_ID_RE.match(session_id):
            return []
        return self._read_ndjson(self.logs_dir / "sessions" / f"{session_id}.ndjson")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(self, path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f, _locked(f, exclusive=True):
            f.write(line.encode("utf-8"))
            f.flush()
            if self._fsync:
                os.fsync(f.fileno())

    def _read_ndjson(self, path: Path) -> list[dict[str, Any]]:
        """Parse the last ``tail_bytes`` of *path*, skipping unreadable lines."""
        if not path.exists():
            return []
        with open(path, "rb") as f, _locked(f, exclusive=False):
            start = max(0, f.seek(0, os.SEEK_END) - self._tail_bytes)
            f.seek(start)
            data = f.read()
        if start:
            # The cut usually lands mid-line
            data = data.partition(b"\n")[2]

        events: list[dict[str, Any]] = []
        for raw in data.decode("utf-8", errors="replace").splitlines():
            if not raw.strip():
                continue
            try:
                events.append(json.loads(raw))
            except json.JSONDecodeError:
                continue
        return events
