"""Tests for tree storage and the debounced save scheduler."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from sheettree.errors import PersistenceFailure, StructuralError
from sheettree.persistence import PersistenceScheduler, TreeStore
from sheettree.settings import JsonFileSettingsStore, MemorySettingsStore, SettingsStore
from sheettree.tree import ROOT, NodeKind, SheetTree


def _sample_tree() -> SheetTree:
    t = SheetTree()
    folder = t.create_node(ROOT, "Finance", NodeKind.folder)
    t.create_node(folder, "Revenue", NodeKind.sheet, sheet_name="Revenue")
    return t


class RecordingStore(MemorySettingsStore):
    """Memory store that records the order of calls."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.calls: list[str] = []

    async def get(self, key: str) -> str | None:
        self.calls.append("get")
        return await super().get(key)

    async def add(self, key: str, value: str) -> None:
        self.calls.append("add")
        await super().add(key, value)

    async def delete(self, key: str) -> None:
        self.calls.append("delete")
        await super().delete(key)


class BrokenStore(SettingsStore):
    async def get(self, key: str) -> str | None:
        raise OSError("settings unavailable")

    async def add(self, key: str, value: str) -> None:
        raise OSError("settings unavailable")

    async def delete(self, key: str) -> None:
        raise OSError("settings unavailable")


# ────────────────────────────────────────────────────────────────
# TreeStore
# ────────────────────────────────────────────────────────────────


class TestTreeStore:
    def test_load_empty_returns_none(self) -> None:
        store = TreeStore(MemorySettingsStore())
        assert asyncio.run(store.load()) is None

    def test_save_then_load(self) -> None:
        settings = MemorySettingsStore()
        store = TreeStore(settings)
        tree = _sample_tree()
        result = asyncio.run(store.save(tree))
        assert result["nodes"] == 2
        assert result["oversize"] is False
        assert json.loads(settings.values["treeStructure"]) == tree.serialize()
        assert asyncio.run(store.load()) == tree

    def test_existing_value_deleted_before_add(self) -> None:
        settings = RecordingStore({"treeStructure": "[]"})
        asyncio.run(TreeStore(settings).save(_sample_tree()))
        assert settings.calls == ["get", "delete", "add"]

    def test_first_save_only_adds(self) -> None:
        settings = RecordingStore()
        asyncio.run(TreeStore(settings).save(_sample_tree()))
        assert settings.calls == ["get", "add"]

    def test_custom_key(self) -> None:
        settings = MemorySettingsStore()
        asyncio.run(TreeStore(settings, key="tree").save(_sample_tree()))
        assert "tree" in settings.values

    def test_oversize_still_written(self) -> None:
        settings = MemorySettingsStore()
        result = asyncio.run(TreeStore(settings, max_bytes=10).save(_sample_tree()))
        assert result["oversize"] is True
        assert "treeStructure" in settings.values

    def test_store_failure_wrapped(self) -> None:
        store = TreeStore(BrokenStore())
        with pytest.raises(PersistenceFailure):
            asyncio.run(store.save(_sample_tree()))
        with pytest.raises(PersistenceFailure):
            asyncio.run(store.load())

    def test_corrupt_blob_is_structural_error(self) -> None:
        store = TreeStore(MemorySettingsStore({"treeStructure": "{oops"}))
        with pytest.raises(StructuralError):
            asyncio.run(store.load())


class TestJsonFileSettingsStore:
    def test_sidecar_path(self, tmp_path: Path) -> None:
        store = JsonFileSettingsStore.for_workbook(tmp_path / "book.xlsx")
        assert store.path == tmp_path / "book.xlsx.sheettree.json"

    def test_round_trip(self, tmp_path: Path) -> None:
        store = JsonFileSettingsStore(tmp_path / "settings.json")

        async def run() -> None:
            assert await store.get("k") is None
            await store.add("k", "v")
            assert await store.get("k") == "v"
            await store.delete("k")
            await store.delete("k")
            assert await store.get("k") is None

        asyncio.run(run())
        assert json.loads((tmp_path / "settings.json").read_text()) == {}
        assert not (tmp_path / "settings.json.tmp").exists()


# ────────────────────────────────────────────────────────────────
# PersistenceScheduler
# ────────────────────────────────────────────────────────────────


class TestPersistenceScheduler:
    def test_burst_collapses_to_one_write_of_final_state(self) -> None:
        """Five moves inside the window produce one write of the last state."""
        tree = SheetTree()
        folder = tree.create_node(ROOT, "F", NodeKind.folder)
        sheets = [tree.create_node(ROOT, f"S{i}", NodeKind.sheet, sheet_name=f"S{i}") for i in range(5)]
        settings = MemorySettingsStore()
        store = TreeStore(settings)

        async def run() -> PersistenceScheduler:
            scheduler = PersistenceScheduler(lambda: store.save(tree), delay=0.05)
            for sheet_id in sheets:
                tree.move_node(sheet_id, folder)
                scheduler.schedule_save()
                await asyncio.sleep(0.005)
            assert scheduler.pending
            await asyncio.sleep(0.15)
            await scheduler.wait_idle()
            return scheduler

        scheduler = asyncio.run(run())
        assert scheduler.writes == 1
        assert not scheduler.pending
        stored = json.loads(settings.values["treeStructure"])
        assert [c["id"] for c in stored[0]["children"]] == sheets

    def test_save_now_cancels_pending(self) -> None:
        calls: list[str] = []

        async def save() -> None:
            calls.append("save")

        async def run() -> PersistenceScheduler:
            scheduler = PersistenceScheduler(save, delay=0.05)
            scheduler.schedule_save()
            await scheduler.save_now()
            await asyncio.sleep(0.1)
            return scheduler

        scheduler = asyncio.run(run())
        assert calls == ["save"]
        assert scheduler.writes == 1

    def test_failure_reported_to_last_callback(self) -> None:
        errors: list[str] = []
        attempts: list[int] = []

        async def save() -> None:
            attempts.append(1)
            raise PersistenceFailure("disk full")

        async def run() -> PersistenceScheduler:
            scheduler = PersistenceScheduler(save, delay=0.01)
            scheduler.schedule_save(on_error=lambda exc: errors.append("first"))
            scheduler.schedule_save(on_error=lambda exc: errors.append(str(exc)))
            await asyncio.sleep(0.05)
            await scheduler.wait_idle()
            # a failed save does not block the next one
            scheduler.schedule_save(on_error=lambda exc: errors.append("again"))
            await asyncio.sleep(0.05)
            await scheduler.wait_idle()
            return scheduler

        scheduler = asyncio.run(run())
        assert errors == ["disk full", "again"]
        assert len(attempts) == 2
        # only completed saves are counted
        assert scheduler.writes == 0

    def test_flush_runs_pending_save(self) -> None:
        calls: list[str] = []

        async def save() -> None:
            calls.append("save")

        async def run() -> PersistenceScheduler:
            scheduler = PersistenceScheduler(save, delay=10)
            scheduler.schedule_save()
            await scheduler.flush()
            return scheduler

        scheduler = asyncio.run(run())
        assert calls == ["save"]
        assert not scheduler.pending

    def test_close_drops_pending_save(self) -> None:
        calls: list[str] = []

        async def save() -> None:
            calls.append("save")

        async def run() -> None:
            scheduler = PersistenceScheduler(save, delay=0.01)
            scheduler.schedule_save()
            scheduler.close()
            await asyncio.sleep(0.05)

        asyncio.run(run())
        assert calls == []

    def test_save_now_raises(self) -> None:
        async def save() -> None:
            raise PersistenceFailure("nope")

        async def run() -> None:
            await PersistenceScheduler(save).save_now()

        with pytest.raises(PersistenceFailure):
            asyncio.run(run())
