from __future__ import annotations

import json
import logging
import sys
from typing import Optional, TextIO

import typer
import uvicorn
from dotenv import load_dotenv

from orchestrator.core.config import Settings

app = typer.Typer(add_completion=False)
logger = logging.getLogger("orchestrator.cli")


def _load_env() -> None:
    load_dotenv()


def _setup_logging(settings: Settings) -> None:
    """Configure centralized logging. The stream handler writes to stderr."""
    from orchestrator.core.logging_config import setup_logging

    setup_logging(
        log_dir=settings.log_dir,
        log_level=settings.log_level,
        clear_on_launch=settings.clear_logs_on_launch,
        stream=sys.stderr,
    )


def serve_stdio(handler, stdin: TextIO, stdout: TextIO) -> None:  # noqa: ANN001
    """Answer newline-delimited JSON-RPC requests until stdin closes."""
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            body = json.loads(line)
        except ValueError as exc:
            logger.warning("Unparsable request line: %s", exc)
            response = {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}
        else:
            response = handler.handle_request(body)
        if response:
            stdout.write(json.dumps(response, default=str) + "\n")
            stdout.flush()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: ORCH_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: ORCH_PORT)"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Serve MCP over HTTP (POST /mcp)."""
    _load_env()
    settings = Settings.from_env()
    _setup_logging(settings)
    uvicorn.run(
        "orchestrator.core.gateway:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        factory=True,
    )


@app.command()
def stdio() -> None:
    """Serve MCP over stdin/stdout. Logs go to stderr."""
    _load_env()
    settings = Settings.from_env()
    _setup_logging(settings)

    from orchestrator.core.gateway import build_protocol_handler, run_startup_recovery

    handler = build_protocol_handler(settings)
    run_startup_recovery(handler)
    logger.info("MCP stdio server ready")
    serve_stdio(handler, sys.stdin, sys.stdout)


@app.command()
def recover() -> None:
    """Resolve dispatches left running by a previous controller."""
    _load_env()
    settings = Settings.from_env()
    _setup_logging(settings)

    from orchestrator.core.gateway import build_protocol_handler

    handler = build_protocol_handler(settings)
    recovered = handler.supervisor.reconciler.recover_orphans()
    if not recovered:
        typer.echo("No orphaned dispatches.")
        raise typer.Exit()
    for task in recovered:
        typer.echo(f"{task.id}: {task.status}" + (f" ({task.error})" if task.error else ""))


@app.command()
def version() -> None:
    from orchestrator import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
