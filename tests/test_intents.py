"""Tests for intent parsing."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from sheettree.intents import CreateSheet, Delete, HideOthers, Move, parse_intent


class TestParseIntent:
    def test_discriminates_on_action(self) -> None:
        intent = parse_intent({"action": "delete", "node_ids": ["a", "b"]})
        assert isinstance(intent, Delete)
        assert intent.proceed_on_failure is False

    def test_defaults(self) -> None:
        assert parse_intent({"action": "create_sheet"}) == CreateSheet()
        assert isinstance(parse_intent({"action": "hide_others"}), HideOthers)

    def test_move_positions(self) -> None:
        assert parse_intent({"action": "move", "node_id": "n", "position": 2}).position == 2
        assert parse_intent({"action": "move", "node_id": "n", "position": "first"}).position == "first"
        assert Move(node_id="n").position == "last"

    @pytest.mark.parametrize(
        "data",
        [
            {"action": "nope"},
            {"node_id": "n"},
            {"action": "rename", "node_id": "n"},
            {"action": "move", "node_id": "n", "position": "middle"},
        ],
    )
    def test_invalid(self, data: dict) -> None:
        with pytest.raises(ValidationError):
            parse_intent(data)
