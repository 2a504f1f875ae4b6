"""Keeps the folder tree and the host's flat sheet list consistent.

Direction tree -> host: create, rename, delete and duplicate go to the
host first and touch the tree only once the host has confirmed.

Direction host -> tree: the host reports added / renamed / deleted without
an identity the engine can rely on, so every handler re-reads the host's
sheet list and works by set difference:

- added:   visible host sheets no node references become root nodes;
- renamed: the single node whose sheet vanished (the *orphan*) takes the
           reported new name; zero or several orphans mean the change
           cannot be attributed, and a full pass runs instead;
- deleted: full pass.

A full pass removes sheet nodes whose sheet is gone and adds root nodes
for unreferenced visible sheets.  Running it twice in a row changes
nothing the second time.

Between the host half and the tree half of its own operations the engine
marks the sheet names and node ids involved as in flight; reconciliation
leaves those alone so an echo of the engine's own change cannot add a
duplicate node or drop a node that is about to be updated.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from pydantic import BaseModel, Field

from sheettree.errors import (
    HostUnavailable,
    NameCollision,
    NodeNotFound,
    ParentNotFound,
    StructuralError,
)
from sheettree.host.base import (
    SheetAdded,
    SheetDeleted,
    SheetInfo,
    SheetRenamed,
    SheetVisibility,
    WorkbookService,
)
from sheettree.names import copy_name, resolve_unique
from sheettree.tree import ROOT, NodeKind, SheetTree

logger = logging.getLogger(__name__)


class ClipboardEntry(BaseModel):
    """Deep copy of one subtree, captured at copy time."""

    label: str
    kind: NodeKind
    sheet_name: str | None = None
    children: list[ClipboardEntry] = Field(default_factory=list)


def default_tree(sheets: Iterable[SheetInfo]) -> SheetTree:
    """Build a flat tree with one root node per visible sheet, in host order."""
    tree = SheetTree()
    for sheet in sheets:
        if sheet.visible:
            tree.create_node(ROOT, sheet.name, NodeKind.sheet, sheet_name=sheet.name)
    return tree


class SyncEngine:
    """Applies structural changes to both sides and reconciles host changes.

    Parameters
    ----------
    tree : SheetTree
        The tree to keep in sync.  Replaced wholesale via :attr:`tree` when
        the orchestrator loads a stored structure.
    host : WorkbookService
        The authoritative sheet list.
    copy_suffix : str
        Suffix for duplicated sheets and folders.
    """

    def __init__(self, tree: SheetTree, host: WorkbookService, *, copy_suffix: str = "Copy") -> None:
        self.tree = tree
        self.host = host
        self.copy_suffix = copy_suffix
        # Names of host sheets seen hidden in the most recent listing
        self.hidden: set[str] = set()
        self._pending_names: set[str] = set()
        self._pending_nodes: set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _in_flight(self, names: Iterable[str] = (), nodes: Iterable[str] = ()) -> Iterator[None]:
        names = [n for n in names if n not in self._pending_names]
        nodes = [n for n in nodes if n not in self._pending_nodes]
        self._pending_names.update(names)
        self._pending_nodes.update(nodes)
        try:
            yield
        finally:
            self._pending_names.difference_update(names)
            self._pending_nodes.difference_update(nodes)

    async def list_sheets(self) -> list[SheetInfo]:
        """Fetch the host's sheets and remember which ones are hidden."""
        sheets = await self.host.list_sheets()
        self.hidden = {s.name for s in sheets if not s.visible}
        return sheets

    def container_for(self, node_id: str | None) -> str:
        """Return where new children of *node_id* go.

        Root for None, the node itself for a folder, and the parent of a
        sheet node (sheets hold no children).
        """
        if node_id is None or node_id == ROOT:
            return ROOT
        if node_id not in self.tree:
            raise ParentNotFound(node_id)
        node = self.tree.get(node_id)
        return node.parent_id if node.is_sheet else node.id

    def _sheet_node(self, node_id: str):
        node = self.tree.get(node_id)
        if not node.is_sheet:
            raise StructuralError(f"Node {node_id!r} is a folder, not a sheet")
        return node

    # ------------------------------------------------------------------
    # Folders (tree only)
    # ------------------------------------------------------------------

    def create_folder(self, parent_id: str | None, name: str) -> dict[str, Any]:
        name = name.strip()
        if not name:
            raise ValueError("Folder name cannot be empty")
        parent = self.container_for(parent_id)
        node_id = self.tree.create_node(parent, name, NodeKind.folder)
        return {"node_id": node_id, "parent_id": parent, "name": name}

    # ------------------------------------------------------------------
    # Create sheet
    # ------------------------------------------------------------------

    async def create_sheet(self, parent_id: str | None, requested: str) -> dict[str, Any]:
        """Create a host sheet under a collision-free name, then its node.

        The host name list is re-read immediately before creating.  If the
        host refuses, no node is created.
        """
        requested = requested.strip()
        if not requested:
            raise ValueError("Sheet name cannot be empty")
        parent = self.container_for(parent_id)

        existing = await self.host.sheet_names()
        final = resolve_unique(requested, existing)
        if final != requested:
            logger.debug("sheet name %r already exists, using %r", requested, final)

        with self._in_flight(names=[final]):
            await self.host.create_sheet(final)
            try:
                await self.host.activate(final)
            except HostUnavailable as exc:
                logger.warning("created sheet %r but could not activate it: %s", final, exc)
            if parent != ROOT and parent not in self.tree:
                parent = ROOT
            node_id = self.tree.create_node(parent, final, NodeKind.sheet, sheet_name=final)

        return {
            "node_id": node_id,
            "parent_id": parent,
            "name": final,
            "requested": requested,
            "adjusted": final != requested,
        }

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    async def rename(self, node_id: str, new_label: str) -> dict[str, Any]:
        """Rename a node; sheet nodes rename their host sheet first.

        Raises:
            NameCollision: Another host sheet already uses the name.  The
                tree is left untouched.
        """
        node = self.tree.get(node_id)
        if not new_label.strip():
            raise ValueError("Name cannot be empty")
        old_label = node.label

        if not node.is_sheet:
            if new_label == old_label:
                return {"node_id": node_id, "kind": "folder", "old": old_label, "new": new_label, "changed": False}
            self.tree.rename_node(node_id, new_label)
            return {"node_id": node_id, "kind": "folder", "old": old_label, "new": new_label, "changed": True}

        old_name = node.sheet_name
        if new_label == old_name:
            return {"node_id": node_id, "kind": "sheet", "old": old_name, "new": new_label, "changed": False}

        names = await self.host.sheet_names()
        others = [n for n in names if n != old_name]
        clash = next((n for n in others if n.casefold() == new_label.casefold()), None)
        if clash is not None:
            raise NameCollision(new_label, clash)

        with self._in_flight(names=[new_label], nodes=[node_id]):
            await self.host.rename_sheet(old_name, new_label)
            if node_id in self.tree:
                self.tree.set_sheet_name(node_id, new_label)

        return {"node_id": node_id, "kind": "sheet", "old": old_name, "new": new_label, "changed": True}

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _outermost(self, node_ids: Iterable[str]) -> list[str]:
        """Drop duplicates and ids nested inside another selected id."""
        selected: list[str] = []
        for node_id in node_ids:
            if node_id not in selected:
                selected.append(node_id)
        present = [i for i in selected if i in self.tree]
        return [
            i for i in present
            if not any(other != i and self.tree.is_descendant(i, other) for other in present)
        ]

    async def delete(self, node_ids: Iterable[str], *, proceed_on_failure: bool = False) -> dict[str, Any]:
        """Delete nodes, removing each referenced host sheet first.

        A sheet whose host deletion fails keeps its node (and the folders
        above it inside the target) unless *proceed_on_failure* is set.
        Successful items are committed either way.
        """
        node_ids = list(node_ids)
        failures: list[dict[str, Any]] = []
        for missing in (i for i in dict.fromkeys(node_ids) if i not in self.tree):
            failures.append({"node_id": missing, "label": None, "sheet_name": None,
                             "error": str(NodeNotFound(missing))})

        deleted_labels: list[str] = []
        deleted_sheets: list[str] = []
        removed_nodes = 0

        for target in self._outermost(node_ids):
            if target not in self.tree:
                continue
            target_label = self.tree.get(target).label
            sheets = [n for n in self.tree.subtree(target) if n.is_sheet]
            failed: set[str] = set()
            done: list[str] = []

            with self._in_flight(nodes=[n.id for n in sheets]):
                for node in sheets:
                    try:
                        await self.host.delete_sheet(node.sheet_name)
                    except HostUnavailable as exc:
                        logger.warning("failed to delete sheet %r: %s", node.sheet_name, exc)
                        failures.append({"node_id": node.id, "label": node.label,
                                         "sheet_name": node.sheet_name, "error": str(exc)})
                        failed.add(node.id)
                        continue
                    done.append(node.id)
                    deleted_sheets.append(node.sheet_name)

                if target not in self.tree:
                    continue
                if not failed or proceed_on_failure:
                    removed_nodes += len(self.tree.delete_node(target))
                    deleted_labels.append(target_label)
                else:
                    for node_id in done:
                        if node_id in self.tree:
                            removed_nodes += len(self.tree.delete_node(node_id))

        return {
            "deleted": deleted_labels,
            "deleted_sheets": deleted_sheets,
            "removed_nodes": removed_nodes,
            "failures": failures,
        }

    # ------------------------------------------------------------------
    # Move (tree only)
    # ------------------------------------------------------------------

    def move(self, node_id: str, new_parent_id: str | None, position: int | str = "last") -> dict[str, Any]:
        parent = ROOT if new_parent_id is None else new_parent_id
        if parent != ROOT and parent in self.tree and self.tree.get(parent).is_sheet:
            raise StructuralError(f"Cannot move into sheet node {parent!r}")
        moved = self.tree.move_node(node_id, parent, position)
        return {"node_id": node_id, "parent_id": parent, "moved": moved}

    def move_to_root(self, node_id: str) -> dict[str, Any]:
        if self.tree.parent_of(node_id) == ROOT:
            return {"node_id": node_id, "parent_id": ROOT, "moved": False, "already_at_root": True}
        result = self.move(node_id, ROOT, "last")
        result["already_at_root"] = False
        return result

    # ------------------------------------------------------------------
    # Reconciliation (host -> tree)
    # ------------------------------------------------------------------

    def _add_missing(self, sheets: list[SheetInfo]) -> list[str]:
        referenced = self.tree.sheet_names()
        added: list[str] = []
        for sheet in sheets:
            if not sheet.visible or sheet.name in referenced or sheet.name in self._pending_names:
                continue
            self.tree.create_node(ROOT, sheet.name, NodeKind.sheet, sheet_name=sheet.name)
            referenced.add(sheet.name)
            added.append(sheet.name)
        return added

    def _orphans(self, host_names: set[str]) -> list:
        return list(self.tree.find(
            lambda n: n.is_sheet
            and n.sheet_name not in host_names
            and n.id not in self._pending_nodes
        ))

    def _remove_missing(self, host_names: set[str]) -> list[str]:
        removed: list[str] = []
        for node in self._orphans(host_names):
            if node.id not in self.tree:
                continue
            # Children of a stale sheet node move up to its place first
            parent = node.parent_id
            index = self.tree.children_of(parent).index(node.id)
            for offset, child in enumerate(self.tree.children_of(node.id)):
                self.tree.move_node(child, parent, index + 1 + offset)
            self.tree.delete_node(node.id)
            removed.append(node.sheet_name)
        return removed

    def _full_pass(self, sheets: list[SheetInfo]) -> dict[str, Any]:
        host_names = {s.name for s in sheets}
        removed = self._remove_missing(host_names)
        added = self._add_missing(sheets)
        if added or removed:
            logger.debug("reconciled: added=%s removed=%s", added, removed)
        return {"mode": "full", "added": added, "removed": removed, "renamed": []}

    async def reconcile(self) -> dict[str, Any]:
        """Full pass against a fresh host listing (also manual refresh)."""
        return self._full_pass(await self.list_sheets())

    async def on_sheet_added(self, event: SheetAdded | None = None) -> dict[str, Any]:
        sheets = await self.list_sheets()
        return {"mode": "added", "added": self._add_missing(sheets), "removed": [], "renamed": []}

    async def on_sheet_renamed(self, event: SheetRenamed | None = None) -> dict[str, Any]:
        sheets = await self.list_sheets()
        host_names = {s.name for s in sheets}
        orphans = self._orphans(host_names)
        new_name = event.name_after if event is not None else None

        if (
            len(orphans) == 1
            and new_name is not None
            and new_name in host_names
            and self.tree.find_sheet(new_name) is None
            and new_name not in self._pending_names
        ):
            node = orphans[0]
            old_name = node.sheet_name
            self.tree.set_sheet_name(node.id, new_name)
            return {
                "mode": "orphan_rename",
                "added": [],
                "removed": [],
                "renamed": [{"node_id": node.id, "old": old_name, "new": new_name}],
            }

        result = self._full_pass(sheets)
        result["orphans"] = len(orphans)
        return result

    async def on_sheet_deleted(self, event: SheetDeleted | None = None) -> dict[str, Any]:
        return await self.reconcile()

    # ------------------------------------------------------------------
    # Copy / paste
    # ------------------------------------------------------------------

    def _capture(self, node_id: str) -> ClipboardEntry:
        node = self.tree.get(node_id)
        return ClipboardEntry(
            label=node.label,
            kind=node.kind,
            sheet_name=node.sheet_name,
            children=[self._capture(c) for c in node.children],
        )

    def copy(self, node_ids: Iterable[str]) -> list[ClipboardEntry]:
        """Deep-copy the selected subtrees (outermost selections only)."""
        node_ids = list(node_ids)
        for node_id in node_ids:
            if node_id not in self.tree:
                raise NodeNotFound(node_id)
        return [self._capture(i) for i in self._outermost(node_ids)]

    async def duplicate_sheet(self, sheet_name: str, parent_id: str) -> dict[str, Any]:
        """Copy a host sheet to ``"<name> Copy"``/``"<name> Copy (n)"`` and add its node."""
        names = await self.host.sheet_names()
        if sheet_name not in names:
            raise HostUnavailable(
                f"Sheet {sheet_name!r} not found. It may have been deleted.",
                "duplicate_sheet",
                sheet_name,
            )
        new_name = copy_name(sheet_name, names, self.copy_suffix)
        with self._in_flight(names=[new_name]):
            final = await self.host.duplicate_sheet(sheet_name, new_name, "end")
            node_id = self.tree.create_node(parent_id, final, NodeKind.sheet, sheet_name=final)
        return {"node_id": node_id, "source": sheet_name, "name": final}

    async def _paste_entry(self, entry: ClipboardEntry, parent_id: str, report: dict[str, Any]) -> None:
        if entry.kind == NodeKind.sheet:
            try:
                created = await self.duplicate_sheet(entry.sheet_name or entry.label, parent_id)
            except (HostUnavailable, NameCollision) as exc:
                report["failures"].append({"label": entry.label, "sheet_name": entry.sheet_name,
                                           "error": str(exc)})
                return
            report["sheets"].append(created)
            return

        folder_label = f"{entry.label} {self.copy_suffix}"
        folder_id = self.tree.create_node(parent_id, folder_label, NodeKind.folder)
        report["folders"].append({"node_id": folder_id, "name": folder_label})
        for child in entry.children:
            await self._paste_entry(child, folder_id, report)

    async def paste(self, buffer: list[ClipboardEntry], target_id: str | None) -> dict[str, Any]:
        """Duplicate every buffered subtree under *target_id*, depth-first."""
        parent = self.container_for(target_id)
        report: dict[str, Any] = {"parent_id": parent, "sheets": [], "folders": [], "failures": []}
        for entry in buffer:
            await self._paste_entry(entry, parent, report)
        return report

    # ------------------------------------------------------------------
    # Visibility / navigation
    # ------------------------------------------------------------------

    async def activate(self, node_id: str) -> dict[str, Any]:
        """Activate the node's sheet, unhiding it first when hidden."""
        node = self._sheet_node(node_id)
        sheets = await self.list_sheets()
        info = next((s for s in sheets if s.name == node.sheet_name), None)
        if info is None:
            raise HostUnavailable(
                f"Sheet '{node.sheet_name}' not found. It may have been deleted.",
                "activate",
                node.sheet_name,
            )
        unhidden = False
        if not info.visible:
            await self.host.set_visibility(info.name, SheetVisibility.visible)
            self.hidden.discard(info.name)
            unhidden = True
        await self.host.activate(info.name)
        return {"node_id": node_id, "sheet_name": info.name, "unhidden": unhidden}

    async def hide_sheet(self, node_id: str) -> dict[str, Any]:
        node = self._sheet_node(node_id)
        await self.host.set_visibility(node.sheet_name, SheetVisibility.hidden)
        self.hidden.add(node.sheet_name)
        return {"node_id": node_id, "sheet_name": node.sheet_name}

    async def hide_others(self) -> dict[str, Any]:
        """Hide every visible sheet except the active one, then run a full pass."""
        active = await self.host.get_active_sheet()
        hidden: list[str] = []
        for sheet in await self.list_sheets():
            if sheet.name != active and sheet.visible:
                await self.host.set_visibility(sheet.name, SheetVisibility.hidden)
                hidden.append(sheet.name)
        result = await self.reconcile()
        return {"active": active, "hidden": hidden, "reconcile": result}
