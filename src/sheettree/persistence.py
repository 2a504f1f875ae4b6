"""Persisting the tree: the settings-store protocol and the save debouncer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sheettree.errors import PersistenceFailure
from sheettree.logging import EventType, emit_warning
from sheettree.logging.events import PERSISTENCE_FAILURE
from sheettree.settings import SettingsStore
from sheettree.tree import SheetTree

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


class TreeStore:
    """Reads and writes the serialized tree under one settings key.

    Write protocol: an existing value is deleted first, then the new value
    is added, so a store never holds a partially overwritten blob.
    """

    def __init__(
        self,
        settings: SettingsStore,
        key: str = "treeStructure",
        max_bytes: int = 1_900_000,
    ) -> None:
        self.settings = settings
        self.key = key
        self.max_bytes = max_bytes

    async def load(self) -> SheetTree | None:
        """Return the stored tree, or None when nothing was saved yet.

        Raises:
            PersistenceFailure: The store could not be read.
            StructuralError: The stored blob is not a valid tree.
        """
        try:
            value = await self.settings.get(self.key)
        except Exception as exc:
            raise PersistenceFailure(f"Could not read stored tree: {exc}") from exc
        if not value:
            return None
        return SheetTree.from_json(value)

    async def save(self, tree: SheetTree) -> dict[str, Any]:
        """Serialize *tree* and write it.  Oversized blobs only warn."""
        text = tree.to_json()
        size = len(text)
        oversize = size > self.max_bytes
        if oversize:
            emit_warning(
                EventType.save_oversize,
                "Tree structure is very large, may hit storage limits",
                {"bytes": size, "max_bytes": self.max_bytes},
            )
        try:
            if await self.settings.get(self.key) is not None:
                await self.settings.delete(self.key)
            await self.settings.add(self.key, text)
        except Exception as exc:
            raise PersistenceFailure(f"Could not save tree structure: {exc}") from exc
        logger.debug("saved tree (%d nodes, %.2f KB)", len(tree), size / 1024)
        return {"bytes": size, "oversize": oversize, "nodes": len(tree)}


class PersistenceScheduler:
    """Trailing-edge debouncer for tree saves.

    Every :meth:`schedule_save` call restarts the quiet window; the save
    runs once the window elapses with no further calls.  :meth:`save_now`
    skips the window.  Must be used from inside a running event loop.

    Parameters
    ----------
    save : Callable[[], Awaitable[Any]]
        Coroutine function performing one serialize-and-store.
    delay : float
        Quiet window in seconds.
    """

    def __init__(self, save: Callable[[], Awaitable[Any]], delay: float = 0.2) -> None:
        self._save = save
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._on_error: ErrorCallback | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.writes = 0

    @property
    def pending(self) -> bool:
        """True while a scheduled save is waiting for its window to elapse."""
        return self._handle is not None

    def schedule_save(self, on_error: ErrorCallback | None = None) -> None:
        """(Re)start the quiet window.  *on_error* receives a failed save."""
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._on_error = on_error
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._run(self._on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, on_error: ErrorCallback | None) -> None:
        try:
            await self._write()
        except Exception as exc:
            if on_error is not None:
                on_error(exc)
            else:
                logger.warning("scheduled save failed: %s", exc)
                emit_warning(
                    EventType.save_failed,
                    f"Scheduled save failed: {exc}",
                    error_code=PERSISTENCE_FAILURE,
                )

    async def _write(self) -> None:
        await self._save()
        self.writes += 1

    def cancel(self) -> None:
        """Drop a pending scheduled save without writing."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    close = cancel

    async def save_now(self) -> None:
        """Write immediately, superseding any pending scheduled save.

        Raises whatever the save raises.
        """
        self.cancel()
        await self._write()

    async def flush(self) -> None:
        """Run a pending save now and wait for in-flight saves to finish."""
        if self._handle is not None:
            self.cancel()
            await self._run(self._on_error)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for saves already fired by the timer."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
