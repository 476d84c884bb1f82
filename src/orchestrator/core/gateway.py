from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from orchestrator import __version__
from orchestrator.core.config import Settings
from orchestrator.core.context import ContextBook
from orchestrator.core.learning import LearningJournal
from orchestrator.core.ledger import TaskLedger
from orchestrator.core.markers import MarkerChannel
from orchestrator.core.recovery import Reconciler
from orchestrator.core.reminders import ReminderBoard
from orchestrator.core.store import JsonStore
from orchestrator.core.supervisor import DispatchSupervisor
from orchestrator.core.teams import TeamRegistry
from orchestrator.core.workflows import WorkflowTracker
from orchestrator.mcp.protocol import MCPProtocolHandler

logger = logging.getLogger("orchestrator.gateway")


def build_protocol_handler(settings: Settings) -> MCPProtocolHandler:
    """Wire one store and every tool group into a protocol handler."""
    os.makedirs(settings.sessions_dir, exist_ok=True)
    store = JsonStore(settings.storage_dir)
    markers = MarkerChannel()
    ledger = TaskLedger(store)
    supervisor = DispatchSupervisor(ledger, markers, settings, Reconciler(ledger, markers))
    return MCPProtocolHandler(
        supervisor=supervisor,
        context=ContextBook(store),
        reminders=ReminderBoard(store),
        workflows=WorkflowTracker(store),
        learnings=LearningJournal(store, settings.skills_dir),
        teams=TeamRegistry(store),
    )


def run_startup_recovery(handler: MCPProtocolHandler) -> int:
    """Resolve dispatches orphaned by a previous run before serving requests.

    Best effort: a failure is logged with its traceback and startup goes on.
    """
    try:
        recovered = handler.supervisor.reconciler.recover_orphans()
    except Exception:  # noqa: BLE001
        logger.exception("Startup recovery failed; continuing without it")
        return 0
    for task in recovered:
        logger.info("Recovered %s -> %s (%s)", task.id, task.status, task.error or "no error")
    return len(recovered)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    load_dotenv(override=False)
    settings = settings or Settings.from_env()

    mcp_handler = build_protocol_handler(settings)
    run_startup_recovery(mcp_handler)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info("Gateway ready: storage=%s sessions=%s", settings.storage_dir, settings.sessions_dir)
        yield
        active = mcp_handler.supervisor.active_watchers()
        if active:
            logger.info("Shutting down with %d dispatch(es) still running; they continue detached", active)

    app = FastAPI(title="agent-orchestrator", version=__version__, lifespan=lifespan)
    app.state.mcp_handler = mcp_handler

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "active_dispatches": mcp_handler.supervisor.active_watchers()}

    @app.post("/mcp")
    async def mcp_jsonrpc(request: Request):
        """MCP JSON-RPC endpoint."""
        if settings.mcp_token:
            token = request.headers.get("x-mcp-token")
            auth = request.headers.get("authorization", "")
            if not token and auth.lower().startswith("bearer "):
                token = auth.split(" ", 1)[1]
            if token != settings.mcp_token:
                raise HTTPException(status_code=401, detail="Invalid MCP token")

        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(
                {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}},
            )
        return mcp_handler.handle_request(body)

    return app
