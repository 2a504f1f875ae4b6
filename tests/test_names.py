"""Tests for sheet name collision resolution."""

from __future__ import annotations

import pytest

from sheettree.names import copy_name, name_exists, resolve_unique


class TestNameExists:
    def test_case_insensitive(self) -> None:
        assert name_exists("revenue", ["Revenue", "Costs"])
        assert name_exists("COSTS", ["Revenue", "Costs"])

    def test_absent(self) -> None:
        assert not name_exists("Summary", ["Revenue", "Costs"])
        assert not name_exists("Summary", [])


class TestResolveUnique:
    def test_free_name_unchanged(self) -> None:
        assert resolve_unique("Budget", ["Sheet1"]) == "Budget"

    def test_first_collision_gets_2(self) -> None:
        assert resolve_unique("Sheet1", ["Sheet1"]) == "Sheet1 (2)"

    def test_skips_taken_suffixes(self) -> None:
        existing = ["Sheet1", "Sheet1 (2)", "sheet1 (3)"]
        assert resolve_unique("Sheet1", existing) == "Sheet1 (4)"

    def test_collision_ignores_case(self) -> None:
        assert resolve_unique("BUDGET", ["budget"]) == "BUDGET (2)"

    def test_deterministic(self) -> None:
        existing = ["A", "A (2)", "B"]
        assert resolve_unique("A", existing) == resolve_unique("A", list(reversed(existing)))

    @pytest.mark.parametrize("n", [0, 1, 5, 20])
    def test_result_is_free(self, n: int) -> None:
        existing = ["Data"] + [f"Data ({i})" for i in range(2, n + 2)]
        result = resolve_unique("Data", existing)
        assert not name_exists(result, existing)


class TestCopyName:
    def test_plain_copy(self) -> None:
        assert copy_name("Report", ["Report"]) == "Report Copy"

    def test_second_copy(self) -> None:
        assert copy_name("Report", ["Report", "Report Copy"]) == "Report Copy (2)"

    def test_third_copy(self) -> None:
        existing = ["Report", "Report Copy", "Report Copy (2)"]
        assert copy_name("Report", existing) == "Report Copy (3)"

    def test_custom_suffix(self) -> None:
        assert copy_name("Report", ["Report"], suffix="Dup") == "Report Dup"
