"""FastAPI server exposing the tree view boundary for one workbook.

Routes are thin wrappers over the shared :class:`WorkbookSession`: intents
go in through ``POST /api/intents``, the rendered tree comes out of
``GET /api/tree``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query

from sheettree.intents import parse_intent
from sheettree.logging import get_sink
from sheettree.ui.service import WorkbookSession

# The singleton session is set at startup by ``create_app()``.
_session: WorkbookSession | None = None


def create_app(workbook_path: Path, overrides: dict[str, Any] | None = None) -> FastAPI:
    """Create the FastAPI application for a given workbook.

    Args:
        workbook_path: The ``.xlsx`` file whose sheets the tree organises.
        overrides: Config values applied over ``sheettree.yaml``.

    Returns:
        Configured FastAPI instance.  The tree is loaded when the app
        starts; pending saves and the workbook are written when it stops.
    """
    global _session
    _session = WorkbookSession(workbook_path, overrides)
    session = _session

    from sheettree import __version__

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await session.open()
        try:
            yield
        finally:
            await session.close()

    app = FastAPI(title="sheettree", version=__version__, lifespan=lifespan)
    app.include_router(_api_router())
    return app


def _svc() -> WorkbookSession:
    """Get the singleton session, raising if not initialised."""
    if _session is None:
        raise HTTPException(500, "Session not initialised")
    return _session


def _api_router():
    from fastapi import APIRouter

    router = APIRouter(prefix="/api")

    # -- Tree --

    @router.get("/tree")
    async def get_tree() -> dict[str, Any]:
        orchestrator = _svc().orchestrator
        return {
            "tree": orchestrator.snapshot(),
            "hidden": sorted(orchestrator.engine.hidden),
            "ready": orchestrator.tree_ready,
        }

    @router.get("/status")
    async def get_status() -> dict[str, Any]:
        orchestrator = _svc().orchestrator
        status = orchestrator.status()
        status["workbook"] = str(_svc().workbook_path)
        status["messages"] = list(orchestrator.messages)[-20:]
        return status

    @router.get("/sheets")
    async def list_sheets() -> list[dict[str, Any]]:
        return await _svc().list_sheets()

    # -- Intents --

    @router.post("/intents")
    async def post_intent(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        session = _svc()
        try:
            result = await session.orchestrator.dispatch(parse_intent(payload))
        except ValueError as exc:
            raise HTTPException(400, str(exc))
        # Let the host's notifications for this change land before replying
        await session.settle()
        return result

    # -- Events --

    @router.get("/events")
    async def get_events(
        level: str | None = Query(None),
        event_type: str | None = Query(None),
        limit: int = Query(200, ge=1, le=2000),
    ) -> list[dict[str, Any]]:
        return _svc().read_events(level=level, event_type=event_type, limit=limit)

    @router.get("/events/session")
    async def get_session_events() -> list[dict[str, Any]]:
        sink = get_sink()
        if sink is None:
            return []
        return sink.read_session_log(_svc().session_id)

    return router
