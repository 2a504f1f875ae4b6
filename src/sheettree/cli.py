"""Command-line interface for sheettree (organise a workbook's sheets in folders)."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click

from sheettree import __version__
from sheettree.config import load_config, resolve_log_dir
from sheettree.tree import ROOT, SheetTree

WorkbookArg = click.Path(dir_okay=False, path_type=Path)


@click.group()
@click.version_option(version=__version__, prog_name="sheettree")
def main() -> None:
    """sheettree -- keep a folder tree of workbook sheets in sync with the workbook."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _run(
    workbook: Path,
    action: Callable[[Any], Awaitable[Any]],
    *,
    save_workbook: bool = True,
) -> Any:
    """Open *workbook*, run *action(session)*, then close it."""
    from sheettree.ui.service import WorkbookSession

    async def run() -> Any:
        session = WorkbookSession(workbook)
        await session.open()
        try:
            result = await action(session)
            await session.settle()
        finally:
            await session.close(save_workbook=save_workbook)
        return result

    return asyncio.run(run())


def _resolve_node(tree: SheetTree, ref: str) -> str:
    """Accept a node id or an unambiguous node label."""
    if ref == ROOT or ref in tree:
        return ref
    matches = list(tree.find(lambda n: n.label == ref))
    if not matches:
        raise click.ClickException(f"No node with id or label {ref!r}")
    if len(matches) > 1:
        ids = ", ".join(m.id for m in matches)
        raise click.ClickException(f"Label {ref!r} is ambiguous; use one of: {ids}")
    return matches[0].id


def _report(result: dict[str, Any], *, show_id: bool = False) -> None:
    if not result["ok"]:
        raise click.ClickException(result["message"] or "Operation failed")
    message = result["message"]
    if show_id and result.get("node_id"):
        message = f"{message} ({result['node_id']})"
    if message:
        click.echo(message)


def _echo_tree(entries: list[dict[str, Any]], hidden: set[str], show_ids: bool, depth: int = 0) -> None:
    for entry in entries:
        is_sheet = entry["data"].get("isWorksheet", False)
        marker = "-" if is_sheet else "+"
        line = f"{'  ' * depth}{marker} {entry['text']}"
        if is_sheet and entry["data"].get("sheetName") in hidden:
            line += "  (hidden)"
        if show_ids:
            line += f"  [{entry['id']}]"
        click.echo(line)
        _echo_tree(entry["children"], hidden, show_ids, depth + 1)


# ---------------------------------------------------------------------------
# Inspect
# ---------------------------------------------------------------------------


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.option("--json", "as_json", is_flag=True, help="Print the stored tree as JSON.")
@click.option("--ids", is_flag=True, help="Show node ids.")
def show(workbook: Path, as_json: bool, ids: bool) -> None:
    """Print the sheet tree of WORKBOOK."""

    async def action(session):
        return session.orchestrator.tree.serialize(), set(session.orchestrator.engine.hidden)

    entries, hidden = _run(workbook, action, save_workbook=False)
    if as_json:
        click.echo(json.dumps(entries, indent=2, ensure_ascii=False))
        return
    if not entries:
        click.echo("(empty)")
        return
    _echo_tree(entries, hidden, ids)


@main.command()
@click.argument("workbook", type=WorkbookArg)
def refresh(workbook: Path) -> None:
    """Reconcile the tree with the sheets currently in WORKBOOK."""

    async def action(session):
        return await session.orchestrator.refresh()

    result = _run(workbook, action)
    _report(result)
    for name in result.get("added", []):
        click.echo(f"  added:   {name}")
    for name in result.get("removed", []):
        click.echo(f"  removed: {name}")


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


@main.command("add-folder")
@click.argument("workbook", type=WorkbookArg)
@click.argument("name", required=False)
@click.option("--parent", default=None, help="Parent node id or label (default: root).")
def add_folder(workbook: Path, name: str | None, parent: str | None) -> None:
    """Create a folder named NAME in the tree."""

    async def action(session):
        tree = session.orchestrator.tree
        parent_id = _resolve_node(tree, parent) if parent else None
        return await session.orchestrator.create_folder(parent_id, name)

    _report(_run(workbook, action), show_id=True)


@main.command("add-sheet")
@click.argument("workbook", type=WorkbookArg)
@click.argument("name", required=False)
@click.option("--parent", default=None, help="Parent node id or label (default: root).")
def add_sheet(workbook: Path, name: str | None, parent: str | None) -> None:
    """Create a sheet named NAME in WORKBOOK and add it to the tree."""

    async def action(session):
        tree = session.orchestrator.tree
        parent_id = _resolve_node(tree, parent) if parent else None
        return await session.orchestrator.create_sheet(parent_id, name)

    _report(_run(workbook, action), show_id=True)


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.argument("node")
@click.argument("label")
def rename(workbook: Path, node: str, label: str) -> None:
    """Rename NODE (id or label) to LABEL; sheet nodes rename their sheet."""

    async def action(session):
        node_id = _resolve_node(session.orchestrator.tree, node)
        return await session.orchestrator.rename(node_id, label)

    _report(_run(workbook, action))


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.argument("nodes", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Drop nodes from the tree even if deleting their sheet fails.")
def delete(workbook: Path, nodes: tuple[str, ...], force: bool) -> None:
    """Delete NODES and every sheet inside them from WORKBOOK."""

    async def action(session):
        tree = session.orchestrator.tree
        node_ids = [_resolve_node(tree, n) for n in nodes]
        return await session.orchestrator.delete(node_ids, proceed_on_failure=force)

    _report(_run(workbook, action))


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.argument("node")
@click.option("--parent", default=None, help="New parent id or label (default: root).")
@click.option("--position", default=None, type=int, help="Index among the new siblings (default: last).")
def move(workbook: Path, node: str, parent: str | None, position: int | None) -> None:
    """Move NODE under another folder (tree only; the workbook is unchanged)."""

    async def action(session):
        orchestrator = session.orchestrator
        node_id = _resolve_node(orchestrator.tree, node)
        if parent is None and position is None:
            return await orchestrator.move_to_root(node_id)
        parent_id = _resolve_node(orchestrator.tree, parent) if parent else ROOT
        return await orchestrator.move(node_id, parent_id, "last" if position is None else position)

    result = _run(workbook, action)
    _report(result)
    if result["ok"] and not result["message"]:
        click.echo("Moved" if result.get("moved") else "Nothing to move")


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.argument("nodes", nargs=-1, required=True)
@click.option("--target", default=None, help="Folder to paste into (default: root).")
def paste(workbook: Path, nodes: tuple[str, ...], target: str | None) -> None:
    """Copy NODES and paste duplicates of their sheets under TARGET."""

    async def action(session):
        orchestrator = session.orchestrator
        node_ids = [_resolve_node(orchestrator.tree, n) for n in nodes]
        copied = await orchestrator.copy(node_ids)
        if not copied["ok"]:
            return copied
        target_id = _resolve_node(orchestrator.tree, target) if target else None
        return await orchestrator.paste(target_id)

    _report(_run(workbook, action))


@main.command("hide-others")
@click.argument("workbook", type=WorkbookArg)
def hide_others(workbook: Path) -> None:
    """Hide every sheet except the active one."""

    async def action(session):
        return await session.orchestrator.hide_others()

    _report(_run(workbook, action))


# ---------------------------------------------------------------------------
# UI
# ---------------------------------------------------------------------------


@main.command()
@click.argument("workbook", type=WorkbookArg)
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--port", type=int, default=None, help="Port (auto-select if omitted).")
def ui(workbook: Path, host: str, port: int | None) -> None:
    """Serve the tree API for WORKBOOK."""
    import socket

    import uvicorn

    from sheettree.ui.server import create_app

    app = create_app(workbook)

    if port is None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, 0))
            port = s.getsockname()[1]

    click.echo(f"Serving sheet tree at http://{host}:{port}/api/tree")
    click.echo("Press Ctrl+C to stop")

    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    except KeyboardInterrupt:
        click.echo("\nStopped.")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.argument("workbook", type=WorkbookArg)
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def events_cmd(workbook: Path, level: str | None, event_type: str | None, limit: int) -> None:
    """Show the structured event log for WORKBOOK."""
    from sheettree.logging.sink import EventSink

    config = load_config(workbook.resolve().parent)
    sink = EventSink(resolve_log_dir(config, workbook))
    events = sink.read_global(level=level, event_type=event_type, limit=limit)

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)


if __name__ == "__main__":
    main()
