"""In-memory folder/sheet tree.

Pure structure: nothing here talks to the workbook host.  The synthetic
root ``#`` owns the top-level nodes.  Node order within ``children`` is the
user's organisational order and is preserved through serialization.

Persisted shape (one entry per node, children nested)::

    {"id": "sheet_3f2a...", "text": "Revenue", "type": "sheet",
     "data": {"isWorksheet": true, "nodeType": "sheet", "sheetName": "Revenue"},
     "children": []}
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from sheettree.errors import (
    CycleDetected,
    DuplicateSheetRef,
    NodeNotFound,
    ParentNotFound,
    StructuralError,
)

ROOT = "#"


class NodeKind(str, Enum):
    folder = "folder"
    sheet = "sheet"


class Node(BaseModel):
    """A folder or a reference to one host sheet."""

    id: str
    label: str
    kind: NodeKind
    sheet_name: str | None = None
    children: list[str] = Field(default_factory=list)
    parent_id: str = ROOT

    @property
    def is_sheet(self) -> bool:
        return self.kind == NodeKind.sheet


def new_node_id(kind: NodeKind) -> str:
    """Return a fresh node id (``folder_<hex>`` / ``sheet_<hex>``)."""
    return f"{kind.value}_{uuid.uuid4().hex}"


Position = int | str


class SheetTree:
    """Ordered forest of :class:`Node` objects under the synthetic root."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._root_children: list[str] = []
        # sheet_name -> node id, kept in step with every mutation
        self._by_sheet: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> Node:
        """Return the node with *node_id*, raising :class:`NodeNotFound`."""
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(node_id) from None

    def children_of(self, parent_id: str) -> list[str]:
        """Return the ordered child ids of *parent_id* (a copy)."""
        if parent_id == ROOT:
            return list(self._root_children)
        return list(self.get(parent_id).children)

    def parent_of(self, node_id: str) -> str:
        return self.get(node_id).parent_id

    def find(self, predicate: Callable[[Node], bool]) -> Iterator[Node]:
        """Yield nodes matching *predicate*, lazily, in pre-order."""
        stack = list(reversed(self._root_children))
        while stack:
            node = self._nodes[stack.pop()]
            if predicate(node):
                yield node
            stack.extend(reversed(node.children))

    def walk(self) -> Iterator[Node]:
        """Yield every node in pre-order."""
        return self.find(lambda _n: True)

    def subtree(self, node_id: str) -> list[Node]:
        """Return *node_id* and all its descendants in pre-order."""
        out: list[Node] = []
        stack = [node_id]
        while stack:
            node = self.get(stack.pop())
            out.append(node)
            stack.extend(reversed(node.children))
        return out

    def is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        """Return True if *node_id* lies strictly below *ancestor_id*."""
        current = self.get(node_id).parent_id
        while current != ROOT:
            if current == ancestor_id:
                return True
            current = self._nodes[current].parent_id
        return False

    def sheet_nodes(self) -> list[Node]:
        return list(self.find(lambda n: n.is_sheet))

    def sheet_names(self) -> set[str]:
        return set(self._by_sheet)

    def find_sheet(self, sheet_name: str) -> Node | None:
        """Return the node referencing *sheet_name* (exact match), or None."""
        node_id = self._by_sheet.get(sheet_name)
        return self._nodes[node_id] if node_id is not None else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _child_list(self, parent_id: str) -> list[str]:
        if parent_id == ROOT:
            return self._root_children
        node = self._nodes.get(parent_id)
        if node is None:
            raise ParentNotFound(parent_id)
        return node.children

    @staticmethod
    def _insert(children: list[str], node_id: str, position: Position) -> None:
        if position == "last":
            children.append(node_id)
        elif position == "first":
            children.insert(0, node_id)
        elif isinstance(position, int):
            index = max(0, min(position, len(children)))
            children.insert(index, node_id)
        else:
            raise ValueError(f"Invalid position: {position!r}")

    def create_node(
        self,
        parent_id: str,
        label: str,
        kind: NodeKind | str,
        sheet_name: str | None = None,
        position: Position = "last",
        node_id: str | None = None,
    ) -> str:
        """Insert a new node under *parent_id* and return its id."""
        kind = NodeKind(kind)
        children = self._child_list(parent_id)
        if kind == NodeKind.sheet:
            if not sheet_name:
                raise StructuralError("Sheet nodes require a sheet_name")
            existing = self._by_sheet.get(sheet_name)
            if existing is not None:
                raise DuplicateSheetRef(sheet_name, existing)
        else:
            sheet_name = None

        node_id = node_id or new_node_id(kind)
        if node_id in self._nodes or node_id == ROOT:
            raise StructuralError(f"Node id {node_id!r} is already in use")

        self._nodes[node_id] = Node(
            id=node_id,
            label=label,
            kind=kind,
            sheet_name=sheet_name,
            parent_id=parent_id,
        )
        self._insert(children, node_id, position)
        if sheet_name is not None:
            self._by_sheet[sheet_name] = node_id
        return node_id

    def move_node(self, node_id: str, new_parent_id: str, position: Position = "last") -> bool:
        """Re-parent and/or reposition a node.

        Returns False when the node already sits at the requested place.
        """
        node = self.get(node_id)
        if new_parent_id != ROOT:
            if new_parent_id not in self._nodes:
                raise ParentNotFound(new_parent_id)
            if new_parent_id == node_id or self.is_descendant(new_parent_id, node_id):
                raise CycleDetected(node_id, new_parent_id)

        old_siblings = self._child_list(node.parent_id)
        old_index = old_siblings.index(node_id)
        new_siblings = self._child_list(new_parent_id)

        if node.parent_id == new_parent_id:
            if position == "last":
                target = len(old_siblings) - 1
            elif position == "first":
                target = 0
            else:
                target = max(0, min(int(position), len(old_siblings) - 1))
            if target == old_index:
                return False

        old_siblings.pop(old_index)
        self._insert(new_siblings, node_id, position)
        node.parent_id = new_parent_id
        return True

    def delete_node(self, node_id: str) -> list[Node]:
        """Remove a node with its whole subtree; return the removed nodes."""
        node = self.get(node_id)
        removed = self.subtree(node_id)
        self._child_list(node.parent_id).remove(node_id)
        for n in removed:
            del self._nodes[n.id]
            if n.sheet_name is not None:
                self._by_sheet.pop(n.sheet_name, None)
        return removed

    def rename_node(self, node_id: str, label: str) -> None:
        """Update a node's label only."""
        self.get(node_id).label = label

    def set_sheet_name(self, node_id: str, sheet_name: str) -> None:
        """Point a sheet node at *sheet_name* and relabel it to match."""
        node = self.get(node_id)
        if not node.is_sheet:
            raise StructuralError(f"Node {node_id!r} is not a sheet node")
        owner = self._by_sheet.get(sheet_name)
        if owner is not None and owner != node_id:
            raise DuplicateSheetRef(sheet_name, owner)
        if node.sheet_name is not None:
            self._by_sheet.pop(node.sheet_name, None)
        node.sheet_name = sheet_name
        node.label = sheet_name
        self._by_sheet[sheet_name] = node_id

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _entry(self, node: Node, skip: Callable[[Node], bool] | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "isWorksheet": node.is_sheet,
            "nodeType": node.kind.value,
        }
        if node.is_sheet:
            data["sheetName"] = node.sheet_name
        return {
            "id": node.id,
            "text": node.label,
            "type": node.kind.value,
            "data": data,
            "children": [
                self._entry(self._nodes[c], skip) for c in node.children
                if skip is None or not skip(self._nodes[c])
            ],
        }

    def serialize(self, skip: Callable[[Node], bool] | None = None) -> list[dict[str, Any]]:
        """Return the nested, ordered persisted representation.

        *skip* leaves out matching nodes with their subtrees (used for the
        rendered view, never for persistence).
        """
        return [
            self._entry(self._nodes[c], skip) for c in self._root_children
            if skip is None or not skip(self._nodes[c])
        ]

    def to_json(self) -> str:
        return json.dumps(self.serialize(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def deserialize(cls, blob: list[dict[str, Any]]) -> SheetTree:
        """Rebuild a tree from :meth:`serialize` output.

        Raises:
            StructuralError: Malformed entries, duplicate ids, or two
                entries referencing the same sheet.
        """
        if not isinstance(blob, list):
            raise StructuralError("Persisted tree must be a list of entries")
        tree = cls()
        stack: list[tuple[str, dict[str, Any]]] = [(ROOT, e) for e in reversed(blob)]
        while stack:
            parent_id, entry = stack.pop()
            if not isinstance(entry, dict) or "id" not in entry:
                raise StructuralError(f"Malformed tree entry: {entry!r}")
            data = entry.get("data") or {}
            is_sheet = bool(data.get("isWorksheet"))
            label = str(entry.get("text", ""))
            sheet_name = (data.get("sheetName") or label) if is_sheet else None
            node_id = tree.create_node(
                parent_id,
                label,
                NodeKind.sheet if is_sheet else NodeKind.folder,
                sheet_name=sheet_name,
                node_id=str(entry["id"]),
            )
            children = entry.get("children") or []
            if not isinstance(children, list):
                raise StructuralError(f"Children of {node_id!r} must be a list")
            stack.extend((node_id, c) for c in reversed(children))
        return tree

    @classmethod
    def from_json(cls, text: str) -> SheetTree:
        try:
            blob = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StructuralError(f"Persisted tree is not valid JSON: {exc}") from exc
        return cls.deserialize(blob)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SheetTree):
            return NotImplemented
        return self.serialize() == other.serialize()

    __hash__ = None  # type: ignore[assignment]
