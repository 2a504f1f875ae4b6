"""Wires view intents and host notifications to the sync engine.

The :class:`Orchestrator` owns lifecycle state (is the tree loaded, are
host handlers registered), turns every intent into a reply dict with a
user-facing message, re-renders the view after each change and schedules
a debounced save.  Errors from the host or the settings store stop at this
boundary: they are logged as events and reported as messages.
"""

from __future__ import annotations

import functools
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from sheettree.config import DEFAULT_CONFIG, debounce_seconds
from sheettree.errors import (
    HostUnavailable,
    NameCollision,
    PartialBatchFailure,
    PersistenceFailure,
    SheetTreeError,
    StructuralError,
)
from sheettree.host.base import SheetAdded, SheetDeleted, SheetRenamed, WorkbookService
from sheettree.intents import Intent, parse_intent
from sheettree.logging import EventType, emit_error, emit_info, emit_warning
from sheettree.logging.events import (
    HOST_UNAVAILABLE,
    NAME_COLLISION,
    PARTIAL_BATCH_FAILURE,
    PERSISTED_TREE_INVALID,
    PERSISTENCE_FAILURE,
    STRUCTURAL_ERROR,
)
from sheettree.persistence import PersistenceScheduler, TreeStore
from sheettree.settings import SettingsStore
from sheettree.sync import ClipboardEntry, SyncEngine, default_tree
from sheettree.tree import SheetTree

logger = logging.getLogger(__name__)

LOADING_MESSAGE = "Tree is still loading, please wait..."

Notifier = Callable[[str, str], None]
Renderer = Callable[[list[dict[str, Any]]], None]


def _error_code(exc: BaseException) -> str | None:
    if isinstance(exc, NameCollision):
        return NAME_COLLISION
    if isinstance(exc, HostUnavailable):
        return HOST_UNAVAILABLE
    if isinstance(exc, StructuralError):
        return STRUCTURAL_ERROR
    if isinstance(exc, PersistenceFailure):
        return PERSISTENCE_FAILURE
    if isinstance(exc, PartialBatchFailure):
        return PARTIAL_BATCH_FAILURE
    return None


def _intent(action: str, failure: str):
    """Decorate an intent handler.

    Rejects the call while the tree is loading and converts engine errors
    into an error reply prefixed with *failure*.
    """

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: Orchestrator, *args: Any, **kwargs: Any) -> dict[str, Any]:
            if not self.tree_ready:
                return self._reply(False, LOADING_MESSAGE, "warning", action=action)
            try:
                return await fn(self, *args, **kwargs)
            except (SheetTreeError, ValueError) as exc:
                logger.warning("%s failed: %s", action, exc)
                emit_error(
                    EventType.intent_failed,
                    f"{failure}: {exc}",
                    {"action": action},
                    error_code=_error_code(exc),
                )
                return self._reply(False, f"{failure}: {exc}", "error", action=action)

        return wrapper

    return decorator


class Orchestrator:
    """Lifecycle and intent routing for one workbook.

    Parameters
    ----------
    host : WorkbookService
        The workbook whose sheets the tree mirrors.
    settings : SettingsStore
        Document-scoped store the tree is persisted in.
    config : dict | None
        Merged configuration (see :data:`sheettree.config.DEFAULT_CONFIG`).
    notify : Callable[[str, str], None] | None
        Receives ``(message, level)`` for every user-facing message.
    render : Callable[[list[dict]], None] | None
        Receives the visible tree snapshot after every change.
    """

    def __init__(
        self,
        host: WorkbookService,
        settings: SettingsStore,
        config: dict[str, Any] | None = None,
        *,
        notify: Notifier | None = None,
        render: Renderer | None = None,
    ) -> None:
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.host = host
        self.store = TreeStore(
            settings,
            key=self.config["settings_key"],
            max_bytes=int(self.config["max_settings_bytes"]),
        )
        self.engine = SyncEngine(SheetTree(), host, copy_suffix=self.config["copy_suffix"])
        self.scheduler = PersistenceScheduler(self._save_tree, debounce_seconds(self.config))
        self.clipboard: list[ClipboardEntry] = []
        self.messages: deque[dict[str, str]] = deque(maxlen=100)
        self._notify = notify
        self._render = render

        self.tree_ready = False
        self.handlers_registered = False
        self.load_source = "none"
        self.events_supported = True

    @property
    def tree(self) -> SheetTree:
        return self.engine.tree

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _message(self, message: str, level: str = "info") -> None:
        self.messages.append({"message": message, "level": level})
        if self._notify is not None:
            self._notify(message, level)

    def _reply(self, ok: bool, message: str, level: str, **data: Any) -> dict[str, Any]:
        if message:
            self._message(message, level)
        return {"ok": ok, "message": message, "level": level, **data}

    def snapshot(self) -> list[dict[str, Any]]:
        """Return the tree as rendered: nodes of hidden sheets are left out."""
        hidden = self.engine.hidden
        return self.tree.serialize(skip=lambda n: n.is_sheet and n.sheet_name in hidden)

    def _rerender(self) -> None:
        if self._render is not None:
            self._render(self.snapshot())

    def _changed(self) -> None:
        self._rerender()
        self.scheduler.schedule_save(on_error=self._on_save_error)

    def status(self) -> dict[str, Any]:
        return {
            "tree_ready": self.tree_ready,
            "handlers_registered": self.handlers_registered,
            "events_supported": self.events_supported,
            "load_source": self.load_source,
            "nodes": len(self.tree),
            "sheets": len(self.tree.sheet_names()),
            "clipboard": len(self.clipboard),
            "save_pending": self.scheduler.pending,
            "saves": self.scheduler.writes,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _save_tree(self) -> None:
        result = await self.store.save(self.tree)
        emit_info(EventType.save_completed, "Tree structure saved", result)
        if result["oversize"]:
            self._message("Warning: Tree structure is very large", "warning")

    def _on_save_error(self, exc: BaseException) -> None:
        logger.warning("saving tree structure failed: %s", exc)
        emit_warning(
            EventType.save_failed,
            f"Could not save structure: {exc}",
            error_code=PERSISTENCE_FAILURE,
        )
        self._message(f"Changes applied but could not save structure: {exc}", "warning")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> dict[str, Any]:
        """Load or bootstrap the tree, then register host handlers once."""
        if self.tree_ready:
            return self.status()

        tree: SheetTree | None = None
        try:
            tree = await self.store.load()
        except (PersistenceFailure, StructuralError) as exc:
            code = PERSISTED_TREE_INVALID if isinstance(exc, StructuralError) else PERSISTENCE_FAILURE
            logger.warning("could not load stored tree: %s", exc)
            emit_warning(EventType.tree_load_failed, str(exc), error_code=code)
            self._message("Error loading structure, using default", "warning")

        if tree is not None:
            self.engine.tree = tree
            self.load_source = "persisted"
            try:
                result = await self.engine.reconcile()
            except HostUnavailable as exc:
                # Keep the stored tree; the next refresh or notification reconciles it
                self._on_startup_host_error(exc)
                result = {"added": [], "removed": []}
            emit_info(
                EventType.tree_loaded,
                "Loaded stored tree structure",
                {"nodes": len(tree), "added": result["added"], "removed": result["removed"]},
            )
            if result["added"] or result["removed"]:
                self.scheduler.schedule_save(on_error=self._on_save_error)
        else:
            self.load_source = "default"
            try:
                sheets = await self.engine.list_sheets()
            except HostUnavailable as exc:
                # Nothing is saved so the next start bootstraps from the real sheets
                self._on_startup_host_error(exc)
                self.engine.tree = SheetTree()
            else:
                self.engine.tree = default_tree(sheets)
                emit_info(EventType.tree_bootstrapped, "Built default tree", {"nodes": len(self.tree)})
                try:
                    await self.scheduler.save_now()
                except PersistenceFailure as exc:
                    self._on_save_error(exc)

        self.tree_ready = True
        await self._register_handlers()
        self._rerender()
        return self.status()

    def _on_startup_host_error(self, exc: HostUnavailable) -> None:
        logger.warning("could not read workbook sheets at startup: %s", exc)
        emit_warning(
            EventType.tree_load_failed,
            f"Could not read workbook sheets: {exc}",
            {"operation": exc.operation},
            error_code=HOST_UNAVAILABLE,
        )
        self._message(f"Error loading sheets: {exc}", "warning")

    async def _register_handlers(self) -> None:
        if self.handlers_registered:
            return
        try:
            supported = await self.host.subscribe(self._on_added, self._on_renamed, self._on_deleted)
        except HostUnavailable as exc:
            logger.warning("registering host handlers failed: %s", exc)
            supported = False
        self.handlers_registered = True
        self.events_supported = supported
        if supported:
            emit_info(EventType.handlers_registered, "Host change handlers registered")
        else:
            emit_info(EventType.handlers_unsupported, "Host does not report sheet changes")
            self._message("Automatic sync is not available. Use Refresh to pick up sheet changes.", "info")

    async def shutdown(self) -> None:
        """Write any pending save."""
        await self.scheduler.flush()

    # ------------------------------------------------------------------
    # Host notifications
    # ------------------------------------------------------------------

    async def _on_added(self, event: SheetAdded) -> None:
        await self._handle_notification(EventType.host_sheet_added, self.engine.on_sheet_added, event)

    async def _on_renamed(self, event: SheetRenamed) -> None:
        await self._handle_notification(EventType.host_sheet_renamed, self.engine.on_sheet_renamed, event)

    async def _on_deleted(self, event: SheetDeleted) -> None:
        await self._handle_notification(EventType.host_sheet_deleted, self.engine.on_sheet_deleted, event)

    async def _handle_notification(self, event_type: EventType, handler, event: Any) -> None:
        if not self.tree_ready:
            logger.debug("ignoring %s before tree is ready", event_type.value)
            return
        try:
            result = await handler(event)
        except Exception as exc:
            logger.exception("handling %s failed", event_type.value)
            emit_error(
                EventType.notification_failed,
                f"Handling {event_type.value} failed: {exc}",
                {"event": event.model_dump() if event is not None else None},
                error_code=_error_code(exc),
            )
            return

        emit_info(event_type, "Host reported a sheet change", {
            "mode": result["mode"],
            "added": result["added"],
            "removed": result["removed"],
            "renamed": result["renamed"],
        })
        if result["mode"] == "orphan_rename":
            change = result["renamed"][0]
            emit_info(EventType.orphan_rename_applied, "Matched renamed sheet to its node", change)
            self._message(f'Sheet renamed to "{change["new"]}" in tree', "success")
        elif result.get("orphans", 0) > 1:
            emit_warning(
                EventType.orphan_rename_ambiguous,
                "Several sheets vanished at once; ran a full reconciliation",
                {"orphans": result["orphans"]},
            )
        for name in result["added"]:
            self._message(f'Sheet "{name}" added to tree', "success")
        if result["removed"]:
            self._message("Sheet deleted, tree updated", "info")

        if result["added"] or result["removed"] or result["renamed"]:
            emit_info(EventType.reconcile_completed, "Tree reconciled with workbook", {
                "added": len(result["added"]),
                "removed": len(result["removed"]),
                "renamed": len(result["renamed"]),
            })
            self._changed()

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def dispatch(self, intent: Intent | dict[str, Any]) -> dict[str, Any]:
        """Route an intent model (or its raw mapping) to its handler."""
        if isinstance(intent, dict):
            intent = parse_intent(intent)
        handler = getattr(self, intent.action)
        return await handler(**intent.model_dump(exclude={"action"}))

    @_intent("create_folder", "Error adding folder")
    async def create_folder(self, parent_id: str | None = None, name: str | None = None) -> dict[str, Any]:
        result = self.engine.create_folder(parent_id, name or self.config["default_folder_name"])
        emit_info(EventType.folder_created, f"Created folder {result['name']!r}", result)
        self._changed()
        return self._reply(True, "Folder created successfully!", "success", **result)

    @_intent("create_sheet", "Error creating sheet")
    async def create_sheet(self, parent_id: str | None = None, name: str | None = None) -> dict[str, Any]:
        requested = name or self.config["default_sheet_name"]
        try:
            result = await self.engine.create_sheet(parent_id, requested)
        except (HostUnavailable, NameCollision) as exc:
            emit_error(
                EventType.sheet_create_failed,
                str(exc),
                {"name": requested},
                error_code=_error_code(exc),
            )
            raise
        emit_info(EventType.sheet_created, f"Created sheet {result['name']!r}", result)
        self._changed()
        if result["adjusted"]:
            message = f'Sheet "{result["requested"]}" already exists. Created "{result["name"]}" instead.'
        else:
            message = "Sheet created successfully!"
        return self._reply(True, message, "success", **result)

    @_intent("rename", "Error renaming sheet")
    async def rename(self, node_id: str, label: str) -> dict[str, Any]:
        try:
            result = await self.engine.rename(node_id, label)
        except NameCollision as exc:
            emit_warning(
                EventType.rename_rejected,
                str(exc),
                {"node_id": node_id, "name": label},
                error_code=NAME_COLLISION,
            )
            return self._reply(False, str(exc), "error", node_id=node_id)
        except HostUnavailable as exc:
            emit_error(EventType.rename_failed, str(exc), {"node_id": node_id}, error_code=HOST_UNAVAILABLE)
            raise
        if not result["changed"]:
            return self._reply(True, "", "info", **result)
        emit_info(EventType.node_renamed, f"Renamed {result['old']!r} to {result['new']!r}", result)
        self._changed()
        if result["kind"] == "sheet":
            message = f'Sheet renamed to "{result["new"]}" successfully!'
        else:
            message = f'Folder renamed to "{result["new"]}"'
        return self._reply(True, message, "success", **result)

    @_intent("delete", "Error deleting")
    async def delete(self, node_ids: list[str], proceed_on_failure: bool = False) -> dict[str, Any]:
        result = await self.engine.delete(node_ids, proceed_on_failure=proceed_on_failure)
        for failure in result["failures"]:
            # Ids missing from the tree have no sheet to delete
            missing = failure["sheet_name"] is None
            emit_warning(
                EventType.sheet_delete_failed,
                f"Error deleting {failure['label'] or failure['node_id']!r}: {failure['error']}",
                failure,
                error_code=STRUCTURAL_ERROR if missing else HOST_UNAVAILABLE,
            )
        if result["removed_nodes"]:
            emit_info(EventType.nodes_deleted, f"Deleted {len(result['deleted'])} item(s)", {
                "deleted": result["deleted"],
                "deleted_sheets": result["deleted_sheets"],
                "removed_nodes": result["removed_nodes"],
            })
            self._changed()
        if result["failures"]:
            error = PartialBatchFailure(result["failures"], succeeded=len(result["deleted_sheets"]))
            level = "warning" if result["removed_nodes"] else "error"
            return self._reply(False, str(error), level, **result)
        return self._reply(True, f"Successfully deleted {len(result['deleted'])} item(s)", "success", **result)

    @_intent("move", "Error moving node")
    async def move(
        self,
        node_id: str,
        parent_id: str | None = None,
        position: int | str = "last",
    ) -> dict[str, Any]:
        result = self.engine.move(node_id, parent_id, position)
        if not result["moved"]:
            return self._reply(True, "", "info", **result)
        emit_info(EventType.node_moved, f"Moved {node_id!r}", result)
        self._changed()
        return self._reply(True, "", "success", **result)

    @_intent("move_to_root", "Error moving node")
    async def move_to_root(self, node_id: str) -> dict[str, Any]:
        label = self.tree.get(node_id).label
        result = self.engine.move_to_root(node_id)
        if result["already_at_root"]:
            return self._reply(True, f'"{label}" is already at root level', "info", **result)
        emit_info(EventType.node_moved, f"Moved {node_id!r} to root", result)
        self._changed()
        return self._reply(True, f'"{label}" moved to root level', "success", **result)

    @_intent("copy", "Error copying")
    async def copy(self, node_ids: list[str]) -> dict[str, Any]:
        if not node_ids:
            return self._reply(False, "No items selected to copy", "warning")
        self.clipboard = self.engine.copy(node_ids)
        emit_info(EventType.nodes_copied, f"Copied {len(self.clipboard)} item(s)", {"node_ids": node_ids})
        return self._reply(True, f"Copied {len(self.clipboard)} item(s)", "success", copied=len(self.clipboard))

    @_intent("paste", "Error pasting")
    async def paste(self, target_id: str | None = None) -> dict[str, Any]:
        if not self.clipboard:
            return self._reply(False, "Nothing to paste", "warning")
        result = await self.engine.paste(self.clipboard, target_id)
        for failure in result["failures"]:
            emit_warning(
                EventType.sheet_duplicate_failed,
                f"Could not duplicate {failure['sheet_name']!r}: {failure['error']}",
                failure,
                error_code=HOST_UNAVAILABLE,
            )
        created = len(result["sheets"]) + len(result["folders"])
        if created:
            emit_info(EventType.nodes_pasted, f"Pasted {created} node(s)", {
                "parent_id": result["parent_id"],
                "sheets": [s["name"] for s in result["sheets"]],
                "folders": [f["name"] for f in result["folders"]],
            })
            self._changed()
        if result["failures"]:
            error = PartialBatchFailure(result["failures"], succeeded=len(result["sheets"]))
            return self._reply(False, f"Error pasting: {error}", "warning", **result)
        return self._reply(True, f"Pasted {len(self.clipboard)} item(s) successfully", "success", **result)

    @_intent("select", "Error selecting sheet")
    async def select(self, node_id: str) -> dict[str, Any]:
        node = self.tree.get(node_id)
        if not node.is_sheet:
            return self._reply(True, "", "info", node_id=node_id)
        try:
            result = await self.engine.activate(node_id)
        except HostUnavailable as exc:
            emit_warning(EventType.intent_failed, str(exc), {"action": "select"}, error_code=HOST_UNAVAILABLE)
            return self._reply(False, str(exc), "error", node_id=node_id)
        emit_info(EventType.sheet_activated, f"Activated {result['sheet_name']!r}", result)
        if result["unhidden"]:
            self._rerender()
        return self._reply(True, "", "info", **result)

    @_intent("hide_sheet", "Error hiding sheet")
    async def hide_sheet(self, node_id: str) -> dict[str, Any]:
        label = self.tree.get(node_id).label
        try:
            result = await self.engine.hide_sheet(node_id)
        except HostUnavailable:
            visible = [s for s in await self.engine.list_sheets() if s.visible]
            if len(visible) > 1:
                raise
            return self._reply(
                False,
                f'Cannot hide "{label}" - at least one sheet must remain visible in the workbook.',
                "warning",
                node_id=node_id,
            )
        emit_info(EventType.sheets_hidden, f"Hid {result['sheet_name']!r}", {"hidden": [result["sheet_name"]]})
        self._rerender()
        return self._reply(True, f'Sheet "{label}" hidden successfully!', "success", **result)

    @_intent("hide_others", "Error hiding sheets")
    async def hide_others(self) -> dict[str, Any]:
        result = await self.engine.hide_others()
        emit_info(EventType.sheets_hidden, f"Hid {len(result['hidden'])} sheet(s)", {
            "active": result["active"],
            "hidden": result["hidden"],
        })
        reconciled = result["reconcile"]
        if reconciled["added"] or reconciled["removed"]:
            self._changed()
        else:
            self._rerender()
        message = f'Hidden {len(result["hidden"])} sheet(s). Only "{result["active"]}" is visible.'
        return self._reply(True, message, "success", **result)

    @_intent("refresh", "Error refreshing")
    async def refresh(self) -> dict[str, Any]:
        result = await self.engine.reconcile()
        emit_info(EventType.reconcile_completed, "Manual refresh", {
            "added": result["added"],
            "removed": result["removed"],
        })
        if result["added"] or result["removed"]:
            self._changed()
        else:
            self._rerender()
        return self._reply(True, "Tree refreshed successfully!", "success", **result)

    @_intent("save", "Error saving")
    async def save(self) -> dict[str, Any]:
        await self.scheduler.save_now()
        return self._reply(True, "Structure saved successfully!", "success", nodes=len(self.tree))

