"""Tests for the HTTP API."""

from __future__ import annotations

import json
from pathlib import Path

import openpyxl
import pytest
from fastapi.testclient import TestClient

from sheettree.logging import reset
from sheettree.ui.server import create_app


# ────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────


@pytest.fixture
def workbook_path(tmp_path: Path) -> Path:
    """A saved workbook with Revenue, Costs and a hidden Scratch sheet."""
    wb = openpyxl.Workbook()
    wb.active.title = "Revenue"
    wb.create_sheet("Costs")
    wb.create_sheet("Scratch").sheet_state = "hidden"
    path = tmp_path / "book.xlsx"
    wb.save(str(path))
    return path


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset()


def _labels(tree: list[dict]) -> list[str]:
    return [entry["text"] for entry in tree]


# ────────────────────────────────────────────────────────────────
# Read endpoints
# ────────────────────────────────────────────────────────────────


class TestReadEndpoints:
    def test_status_after_startup(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tree_ready"] is True
        assert data["load_source"] == "default"
        assert data["events_supported"] is True

    def test_tree_omits_hidden_sheets(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            data = client.get("/api/tree").json()
        assert _labels(data["tree"]) == ["Revenue", "Costs"]
        assert data["hidden"] == ["Scratch"]

    def test_sheets(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            sheets = client.get("/api/sheets").json()
        assert sheets == [
            {"name": "Revenue", "visibility": "visible"},
            {"name": "Costs", "visibility": "visible"},
            {"name": "Scratch", "visibility": "hidden"},
        ]

    def test_events_logged(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            events = client.get("/api/events").json()
            bootstrapped = client.get("/api/events", params={"event_type": "tree_bootstrapped"}).json()
            session = client.get("/api/events/session").json()
        assert events
        assert len(bootstrapped) == 1
        assert any(e["event_type"] == "handlers_registered" for e in session)


# ────────────────────────────────────────────────────────────────
# Intents
# ────────────────────────────────────────────────────────────────


class TestIntents:
    def test_create_sheet_in_folder(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            folder = client.post("/api/intents", json={"action": "create_folder", "name": "Q1"}).json()
            assert folder["ok"] is True
            sheet = client.post(
                "/api/intents",
                json={"action": "create_sheet", "parent_id": folder["node_id"], "name": "Forecast"},
            ).json()
            tree = client.get("/api/tree").json()["tree"]
        assert sheet["message"] == "Sheet created successfully!"
        assert _labels(tree) == ["Revenue", "Costs", "Q1"]
        assert _labels(tree[2]["children"]) == ["Forecast"]

    def test_rename_collision_is_reported(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            tree = client.get("/api/tree").json()["tree"]
            costs_id = tree[1]["id"]
            resp = client.post("/api/intents", json={"action": "rename", "node_id": costs_id, "label": "revenue"})
        assert resp.status_code == 200
        assert resp.json()["ok"] is False
        assert "already exists" in resp.json()["message"]

    def test_unknown_action_is_400(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            resp = client.post("/api/intents", json={"action": "explode"})
        assert resp.status_code == 400

    def test_missing_field_is_400(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            resp = client.post("/api/intents", json={"action": "rename", "label": "X"})
        assert resp.status_code == 400

    def test_shutdown_writes_workbook_and_tree(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            client.post("/api/intents", json={"action": "create_sheet", "name": "Notes"})
            client.post("/api/intents", json={"action": "create_folder", "name": "Archive"})

        wb = openpyxl.load_workbook(str(workbook_path))
        assert wb.sheetnames == ["Revenue", "Costs", "Scratch", "Notes"]
        sidecar = workbook_path.with_name("book.xlsx.sheettree.json")
        stored = json.loads(json.loads(sidecar.read_text())["treeStructure"])
        assert _labels(stored) == ["Revenue", "Costs", "Notes", "Archive"]

    def test_restart_loads_persisted_tree(self, workbook_path: Path) -> None:
        with TestClient(create_app(workbook_path)) as client:
            folder = client.post("/api/intents", json={"action": "create_folder", "name": "Keep"}).json()
            costs_id = client.get("/api/tree").json()["tree"][1]["id"]
            client.post(
                "/api/intents",
                json={"action": "move", "node_id": costs_id, "parent_id": folder["node_id"]},
            )

        with TestClient(create_app(workbook_path)) as client:
            status = client.get("/api/status").json()
            tree = client.get("/api/tree").json()["tree"]
        assert status["load_source"] == "persisted"
        assert _labels(tree) == ["Revenue", "Keep"]
        assert _labels(tree[1]["children"]) == ["Costs"]
