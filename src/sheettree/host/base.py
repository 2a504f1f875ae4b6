"""Contract of the workbook host the tree is synchronised with.

The host owns the flat, authoritative list of sheets.  It reports changes
through three coarse notifications; the worksheet id they carry may no
longer resolve by the time a handler runs, so consumers re-read
:meth:`WorkbookService.list_sheets` instead of trusting it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum

from pydantic import BaseModel


class SheetVisibility(str, Enum):
    visible = "visible"
    hidden = "hidden"
    very_hidden = "veryHidden"


class SheetInfo(BaseModel):
    name: str
    visibility: SheetVisibility = SheetVisibility.visible

    @property
    def visible(self) -> bool:
        return self.visibility == SheetVisibility.visible


class SheetAdded(BaseModel):
    worksheet_id: str


class SheetRenamed(BaseModel):
    worksheet_id: str
    name_before: str
    name_after: str


class SheetDeleted(BaseModel):
    worksheet_id: str | None = None


AddedHandler = Callable[[SheetAdded], Awaitable[None]]
RenamedHandler = Callable[[SheetRenamed], Awaitable[None]]
DeletedHandler = Callable[[SheetDeleted], Awaitable[None]]


class WorkbookService(ABC):
    """Async operations the tree engine consumes from the host.

    Implementations raise :class:`~sheettree.errors.HostUnavailable` when a
    call is rejected and :class:`~sheettree.errors.NameCollision` when a
    name is already taken (case-insensitively).
    """

    @abstractmethod
    async def list_sheets(self) -> list[SheetInfo]:
        """Return every sheet, in host order, with its visibility."""

    async def sheet_names(self) -> list[str]:
        return [s.name for s in await self.list_sheets()]

    @abstractmethod
    async def create_sheet(self, name: str) -> None: ...

    @abstractmethod
    async def rename_sheet(self, name: str, new_name: str) -> None: ...

    @abstractmethod
    async def delete_sheet(self, name: str) -> None: ...

    @abstractmethod
    async def duplicate_sheet(self, name: str, new_name: str, position: str = "end") -> str:
        """Copy sheet *name* to *new_name* and return the copy's name."""

    @abstractmethod
    async def set_visibility(self, name: str, visibility: SheetVisibility) -> None: ...

    @abstractmethod
    async def activate(self, name: str) -> None: ...

    @abstractmethod
    async def get_active_sheet(self) -> str: ...

    @abstractmethod
    async def subscribe(
        self,
        on_added: AddedHandler,
        on_renamed: RenamedHandler,
        on_deleted: DeletedHandler,
    ) -> bool:
        """Register change handlers.  Returns False if the host has none."""
