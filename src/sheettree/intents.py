"""Structural intents emitted by the tree view.

Each intent is a small pydantic model tagged by ``action``; :data:`Intent`
is the discriminated union accepted by ``Orchestrator.dispatch`` and by
``POST /api/intents``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class CreateFolder(BaseModel):
    action: Literal["create_folder"] = "create_folder"
    parent_id: str | None = None
    name: str | None = None


class CreateSheet(BaseModel):
    action: Literal["create_sheet"] = "create_sheet"
    parent_id: str | None = None
    name: str | None = None


class Rename(BaseModel):
    action: Literal["rename"] = "rename"
    node_id: str
    label: str


class Delete(BaseModel):
    action: Literal["delete"] = "delete"
    node_ids: list[str]
    proceed_on_failure: bool = False


class Move(BaseModel):
    action: Literal["move"] = "move"
    node_id: str
    parent_id: str | None = None
    position: int | Literal["first", "last"] = "last"


class MoveToRoot(BaseModel):
    action: Literal["move_to_root"] = "move_to_root"
    node_id: str


class Copy(BaseModel):
    action: Literal["copy"] = "copy"
    node_ids: list[str]


class Paste(BaseModel):
    action: Literal["paste"] = "paste"
    target_id: str | None = None


class Select(BaseModel):
    action: Literal["select"] = "select"
    node_id: str


class HideSheet(BaseModel):
    action: Literal["hide_sheet"] = "hide_sheet"
    node_id: str


class HideOthers(BaseModel):
    action: Literal["hide_others"] = "hide_others"


class Refresh(BaseModel):
    action: Literal["refresh"] = "refresh"


class Save(BaseModel):
    action: Literal["save"] = "save"


Intent = Annotated[
    Union[
        CreateFolder,
        CreateSheet,
        Rename,
        Delete,
        Move,
        MoveToRoot,
        Copy,
        Paste,
        Select,
        HideSheet,
        HideOthers,
        Refresh,
        Save,
    ],
    Field(discriminator="action"),
]

_adapter: TypeAdapter[Intent] = TypeAdapter(Intent)


def parse_intent(data: dict) -> Intent:
    """Validate a raw mapping into the matching intent model."""
    return _adapter.validate_python(data)
