"""One open workbook: host, settings store, config, logging and orchestrator.

Shared by the HTTP server and the CLI so both wire a workbook the same way.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any

from sheettree.config import load_config, resolve_log_dir
from sheettree.host.xlsx import XlsxWorkbook
from sheettree.logging import get_sink, set_log_dir
from sheettree.orchestrator import Notifier, Orchestrator, Renderer
from sheettree.settings import JsonFileSettingsStore


class WorkbookSession:
    """Wraps a single ``.xlsx`` workbook and its tree.

    Parameters
    ----------
    workbook_path : Path
        Workbook file.  A missing file starts a new one-sheet workbook that
        is written on :meth:`close`.
    overrides : dict | None
        Config values applied over ``sheettree.yaml``.
    notify, render
        Passed through to the :class:`Orchestrator`.
    """

    def __init__(
        self,
        workbook_path: Path,
        overrides: dict[str, Any] | None = None,
        *,
        notify: Notifier | None = None,
        render: Renderer | None = None,
    ) -> None:
        self.workbook_path = workbook_path
        self.config = load_config(workbook_path.resolve().parent, overrides)
        self.session_id = uuid.uuid4().hex[:12]
        self.log_dir = resolve_log_dir(self.config, workbook_path)
        set_log_dir(
            self.log_dir,
            session_id=self.session_id,
            fsync=bool(self.config.get("logging_fsync", False)),
            tail_bytes=self.config.get("logging_tail_bytes"),
        )

        self.host = XlsxWorkbook.open(workbook_path)
        self.settings = JsonFileSettingsStore.for_workbook(workbook_path)
        self.orchestrator = Orchestrator(
            self.host,
            self.settings,
            self.config,
            notify=notify,
            render=render,
        )

    async def open(self) -> dict[str, Any]:
        """Load (or bootstrap) the tree and start listening for changes."""
        return await self.orchestrator.start()

    async def settle(self) -> None:
        """Wait for host notifications already delivered to finish."""
        await self.host.drain_events()

    async def close(self, *, save_workbook: bool = True) -> None:
        """Finish notifications, flush pending saves, write the workbook."""
        await self.settle()
        await self.orchestrator.shutdown()
        if save_workbook:
            self.host.save()

    async def list_sheets(self) -> list[dict[str, Any]]:
        return [s.model_dump(mode="json") for s in await self.host.list_sheets()]

    def read_events(
        self,
        level: str | None = None,
        event_type: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        sink = get_sink()
        if sink is None:
            return []
        return sink.read_global(level=level, event_type=event_type, limit=limit)
