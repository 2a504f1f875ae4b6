"""Error types for tree structure, host, and persistence failures."""

from __future__ import annotations

from typing import Any


class SheetTreeError(Exception):
    """Base class for all sheettree errors."""


class HostUnavailable(SheetTreeError):
    """A workbook host call was rejected or could not complete.

    Attributes:
        operation: Host operation that failed (``create_sheet``, ...).
        sheet_name: Sheet the call targeted, when there was one.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        sheet_name: str | None = None,
    ) -> None:
        self.operation = operation
        self.sheet_name = sheet_name
        super().__init__(message)


class NameCollision(SheetTreeError):
    """A create or rename would duplicate an existing sheet name.

    Attributes:
        name: The requested name.
        existing: The existing sheet name it collides with.
    """

    def __init__(self, name: str, existing: str | None = None) -> None:
        self.name = name
        self.existing = existing or name
        super().__init__(
            f'A sheet named "{name}" already exists. Please choose a different name.'
        )


class StructuralError(SheetTreeError):
    """Tree invariant violation (missing node, cycle, duplicate sheet ref)."""


class ParentNotFound(StructuralError):
    def __init__(self, parent_id: str) -> None:
        self.parent_id = parent_id
        super().__init__(f"Parent node {parent_id!r} not found")


class NodeNotFound(StructuralError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node {node_id!r} not found")


class CycleDetected(StructuralError):
    def __init__(self, node_id: str, new_parent_id: str) -> None:
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move {node_id!r} under {new_parent_id!r}: "
            "destination is inside the moved subtree"
        )


class DuplicateSheetRef(StructuralError):
    def __init__(self, sheet_name: str, node_id: str) -> None:
        self.sheet_name = sheet_name
        self.node_id = node_id
        super().__init__(
            f"Sheet {sheet_name!r} is already referenced by node {node_id!r}"
        )


class PersistenceFailure(SheetTreeError):
    """Writing or reading the stored tree failed.  Never fatal."""


class PartialBatchFailure(SheetTreeError):
    """Some items of a multi-node delete or paste failed.

    Attributes:
        failures: One dict per failed item with ``label``, ``sheet_name``
            and ``error`` keys.
        succeeded: Number of items that were committed.
    """

    def __init__(self, failures: list[dict[str, Any]], succeeded: int = 0) -> None:
        self.failures = failures
        self.succeeded = succeeded
        labels = ", ".join(repr(f.get("label")) for f in failures)
        super().__init__(
            f"{len(failures)} item(s) failed ({labels}); {succeeded} succeeded"
        )
