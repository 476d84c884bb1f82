"""Centralized logging configuration for the orchestrator.

Sets up Python's logging system to write to a stream handler and a
rotating log file in the configured log directory. Also provides a
dedicated JSONL logger for MCP tool calls.

Log directory structure::

    ~/.claude/orchestrator/.logs/
    ├── orchestrator.log          # All Python logger output (rotating)
    ├── mcp-calls.log             # Every MCP JSON-RPC request (JSONL)
    └── audit.jsonl               # Structured audit events (mirror)

When the server speaks MCP over stdio, stdout is the protocol channel,
so the stream handler must be pointed at stderr.
"""
from __future__ import annotations

import glob
import json
import logging
import logging.handlers
import os
import time
from pathlib import Path
from typing import IO, Any, Optional

# Set by setup_logging()
_log_dir: Optional[str] = None

mcp_call_logger = logging.getLogger("orchestrator._mcp_calls")


def get_log_dir() -> str:
    """Return the configured log directory, falling back to default."""
    if _log_dir:
        return _log_dir
    default = str(Path(os.path.expanduser("~")) / ".claude" / "orchestrator" / ".logs")
    return os.getenv("ORCH_LOG_DIR", default)


def clear_logs(log_dir: str) -> None:
    """Remove ``*.log`` and ``*.jsonl`` files from the log directory.

    Called before any handlers are attached so there are no open-file
    conflicts.
    """
    if not os.path.isdir(log_dir):
        return
    for pattern in ("*.log", "*.log.*", "*.jsonl"):
        for path in glob.glob(os.path.join(log_dir, pattern)):
            try:
                os.remove(path)
            except OSError:
                logging.getLogger("orchestrator").warning("Could not remove log file %s", path)


def setup_logging(
    log_dir: str,
    log_level: str = "info",
    *,
    clear_on_launch: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """Configure the logging system with a stream handler and file handlers.

    ``stream`` defaults to stderr (the ``logging.StreamHandler`` default).
    Call once at application startup.
    """
    global _log_dir
    _log_dir = log_dir

    if clear_on_launch:
        clear_logs(log_dir)

    os.makedirs(log_dir, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # Avoid duplicate output on re-init
    root.handlers.clear()

    fmt = logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(fmt)
    root.addHandler(stream_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, "orchestrator.log"),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    _setup_jsonl_logger(mcp_call_logger, os.path.join(log_dir, "mcp-calls.log"))

    logging.getLogger("orchestrator").info(
        "Logging initialized: log_dir=%s, level=%s", log_dir, log_level
    )


def _setup_jsonl_logger(logger_instance: logging.Logger, path: str) -> None:
    """Configure a logger to write raw JSONL messages to a rotating file."""
    logger_instance.setLevel(logging.INFO)
    logger_instance.propagate = False
    logger_instance.handlers.clear()

    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    # Message is already JSON
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger_instance.addHandler(handler)


def log_mcp_call(
    method: str,
    tool_name: str | None = None,
    tool_args: dict[str, Any] | None = None,
    duration_ms: float | None = None,
    error: str | None = None,
) -> None:
    """Log an MCP JSON-RPC call to the dedicated MCP calls log."""
    record: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "method": method,
    }
    if tool_name:
        record["tool"] = tool_name
    if tool_args is not None:
        args_str = json.dumps(tool_args, default=str)
        record["tool_args"] = tool_args if len(args_str) < 10000 else args_str[:10000] + "…(truncated)"
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 1)
    if error:
        record["error"] = error[:5000]
    mcp_call_logger.info(json.dumps(record, default=str))


def get_audit_log_path() -> str:
    """Return the path to the centralized audit JSONL log."""
    return os.path.join(get_log_dir(), "audit.jsonl")


def append_to_file(path: str, line: str) -> None:
    """Append a line to a log file, flushing immediately."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")
        f.flush()
