"""Workbook host backed by an openpyxl workbook (``.xlsx`` on disk).

Enforces the same rules a live spreadsheet host does: sheet names are
unique ignoring case, at most 31 characters and free of ``[]:*?/\\``; a
workbook keeps at least one sheet and at least one visible sheet; hidden
sheets cannot be active.

Every structural change fires the matching notification asynchronously,
including changes made through this object by the tree engine itself.
Handlers run as separate tasks, so they interleave with the caller at its
next await, the way host events do.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from sheettree.errors import HostUnavailable, NameCollision
from sheettree.host.base import (
    AddedHandler,
    DeletedHandler,
    RenamedHandler,
    SheetAdded,
    SheetDeleted,
    SheetInfo,
    SheetRenamed,
    SheetVisibility,
    WorkbookService,
)
from sheettree.names import name_exists

logger = logging.getLogger(__name__)

_INVALID_TITLE_RE = re.compile(r"[\[\]:*?/\\]")
_MAX_TITLE_LEN = 31


def validate_sheet_name(name: str) -> None:
    """Raise :class:`HostUnavailable` if the host would refuse *name*."""
    if not name or not name.strip():
        raise HostUnavailable("Sheet name cannot be empty", "validate", name)
    if len(name) > _MAX_TITLE_LEN:
        raise HostUnavailable(
            f"Sheet name {name!r} is longer than {_MAX_TITLE_LEN} characters",
            "validate",
            name,
        )
    if _INVALID_TITLE_RE.search(name):
        raise HostUnavailable(
            f"Sheet name {name!r} contains one of the characters [ ] : * ? / \\",
            "validate",
            name,
        )
    if name.startswith("'") or name.endswith("'"):
        raise HostUnavailable(
            f"Sheet name {name!r} cannot begin or end with an apostrophe",
            "validate",
            name,
        )


class XlsxWorkbook(WorkbookService):
    """openpyxl-backed :class:`WorkbookService`.

    Parameters
    ----------
    workbook : Workbook
        The workbook to operate on.
    path : Path | None
        Where :meth:`save` writes the workbook.
    supports_events : bool
        When False, :meth:`subscribe` reports that notifications are not
        available (older hosts).
    """

    def __init__(
        self,
        workbook: Workbook,
        path: Path | None = None,
        *,
        supports_events: bool = True,
    ) -> None:
        self.workbook = workbook
        self.path = path
        self.supports_events = supports_events
        self._ids: dict[int, str] = {}
        self._subscribers: list[tuple[AddedHandler, RenamedHandler, DeletedHandler]] = []
        self._pending: set[asyncio.Task[Any]] = set()

    @classmethod
    def open(cls, path: Path, **kwargs: Any) -> XlsxWorkbook:
        """Load *path*, or start a new one-sheet workbook if it does not exist."""
        if path.exists():
            wb = openpyxl.load_workbook(str(path))
        else:
            wb = openpyxl.Workbook()
            wb.active.title = "Sheet1"
        return cls(wb, path, **kwargs)

    def save(self, path: Path | None = None) -> Path:
        """Write the workbook to *path* (default: the path it was opened from)."""
        target = path or self.path
        if target is None:
            raise ValueError("No path to save the workbook to")
        self.workbook.save(str(target))
        return target

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _sheet_id(self, ws: Worksheet) -> str:
        key = id(ws)
        if key not in self._ids:
            self._ids[key] = f"ws_{uuid.uuid4().hex[:12]}"
        return self._ids[key]

    def _get(self, name: str, operation: str) -> Worksheet:
        for ws in self.workbook.worksheets:
            if ws.title == name:
                return ws
        raise HostUnavailable(f"Sheet {name!r} not found", operation, name)

    def _check_free(self, name: str, ignore: Worksheet | None = None) -> None:
        others = [ws.title for ws in self.workbook.worksheets if ws is not ignore]
        if name_exists(name, others):
            existing = next(t for t in others if t.casefold() == name.casefold())
            raise NameCollision(name, existing)

    def _visible(self) -> list[Worksheet]:
        return [ws for ws in self.workbook.worksheets if ws.sheet_state == "visible"]

    def _set_active(self, ws: Worksheet) -> None:
        self.workbook.active = ws
        for other in self.workbook.worksheets:
            other.sheet_view.tabSelected = other is ws

    def _ensure_valid_active(self, previous: Worksheet | None) -> None:
        """Keep a visible sheet active after a removal or a hide."""
        if previous is not None and previous in self.workbook.worksheets and previous.sheet_state == "visible":
            self._set_active(previous)
            return
        visible = self._visible()
        if visible:
            self._set_active(visible[0])

    def _current_active(self) -> Worksheet | None:
        active = self.workbook.active
        return active if active in self.workbook.worksheets else None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, event: SheetAdded | SheetRenamed | SheetDeleted) -> None:
        if not self._subscribers:
            return
        loop = asyncio.get_running_loop()
        for on_added, on_renamed, on_deleted in self._subscribers:
            if isinstance(event, SheetAdded):
                coro = on_added(event)
            elif isinstance(event, SheetRenamed):
                coro = on_renamed(event)
            else:
                coro = on_deleted(event)
            task = loop.create_task(coro)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain_events(self) -> None:
        """Wait until every delivered notification handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # WorkbookService
    # ------------------------------------------------------------------

    async def list_sheets(self) -> list[SheetInfo]:
        return [
            SheetInfo(name=ws.title, visibility=SheetVisibility(ws.sheet_state))
            for ws in self.workbook.worksheets
        ]

    async def create_sheet(self, name: str) -> None:
        validate_sheet_name(name)
        self._check_free(name)
        ws = self.workbook.create_sheet(title=name)
        logger.debug("created sheet %r", name)
        self._notify(SheetAdded(worksheet_id=self._sheet_id(ws)))

    async def rename_sheet(self, name: str, new_name: str) -> None:
        ws = self._get(name, "rename_sheet")
        if new_name == name:
            return
        validate_sheet_name(new_name)
        self._check_free(new_name, ignore=ws)
        ws.title = new_name
        logger.debug("renamed sheet %r -> %r", name, new_name)
        self._notify(SheetRenamed(worksheet_id=self._sheet_id(ws), name_before=name, name_after=new_name))

    async def delete_sheet(self, name: str) -> None:
        ws = self._get(name, "delete_sheet")
        if len(self.workbook.worksheets) <= 1:
            raise HostUnavailable("Cannot delete the only sheet", "delete_sheet", name)
        if ws.sheet_state == "visible" and len(self._visible()) <= 1:
            raise HostUnavailable(
                "Cannot delete the last visible sheet", "delete_sheet", name
            )
        previous = self._current_active()
        sheet_id = self._sheet_id(ws)
        self.workbook.remove(ws)
        self._ids.pop(id(ws), None)
        self._ensure_valid_active(previous)
        logger.debug("deleted sheet %r", name)
        self._notify(SheetDeleted(worksheet_id=sheet_id))

    async def duplicate_sheet(self, name: str, new_name: str, position: str = "end") -> str:
        source = self._get(name, "duplicate_sheet")
        validate_sheet_name(new_name)
        self._check_free(new_name)
        try:
            copy = self.workbook.copy_worksheet(source)
        except ValueError as exc:
            raise HostUnavailable(str(exc), "duplicate_sheet", name) from exc
        copy.title = new_name
        if position == "after":
            offset = self.workbook.index(source) + 1 - self.workbook.index(copy)
            self.workbook.move_sheet(copy, offset=offset)
        elif position != "end":
            raise HostUnavailable(f"Unsupported position {position!r}", "duplicate_sheet", name)
        logger.debug("duplicated sheet %r as %r", name, new_name)
        self._notify(SheetAdded(worksheet_id=self._sheet_id(copy)))
        return copy.title

    async def set_visibility(self, name: str, visibility: SheetVisibility) -> None:
        ws = self._get(name, "set_visibility")
        visibility = SheetVisibility(visibility)
        if ws.sheet_state == visibility.value:
            return
        if visibility != SheetVisibility.visible and ws.sheet_state == "visible" and len(self._visible()) <= 1:
            raise HostUnavailable(
                "InvalidOperation: at least one sheet must remain visible",
                "set_visibility",
                name,
            )
        previous = self._current_active()
        ws.sheet_state = visibility.value
        self._ensure_valid_active(previous)

    async def activate(self, name: str) -> None:
        ws = self._get(name, "activate")
        if ws.sheet_state != "visible":
            raise HostUnavailable(f"Sheet {name!r} is hidden and cannot be activated", "activate", name)
        self._set_active(ws)

    async def get_active_sheet(self) -> str:
        active = self._current_active()
        if active is None:
            raise HostUnavailable("Workbook has no active sheet", "get_active_sheet")
        return active.title

    async def subscribe(
        self,
        on_added: AddedHandler,
        on_renamed: RenamedHandler,
        on_deleted: DeletedHandler,
    ) -> bool:
        if not self.supports_events:
            return False
        self._subscribers.append((on_added, on_renamed, on_deleted))
        return True
