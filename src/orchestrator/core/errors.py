"""Error taxonomy shared by the tool groups and the dispatch subsystem.

Tool handlers raise these; only the MCP protocol layer turns them into
``isError`` payloads.
"""
from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    kind = "error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(OrchestratorError):
    """Bad or missing arguments, unknown target. Raised before any side effect."""

    kind = "validation_error"


class NotFoundError(OrchestratorError):
    kind = "not_found"


class PreconditionError(OrchestratorError):
    """An operation was attempted from a state that does not allow it."""

    kind = "precondition_failed"

    def __init__(self, message: str, status: str, **details: Any) -> None:
        super().__init__(message, status=status, **details)
        self.status = status


class SpawnError(OrchestratorError):
    kind = "spawn_error"


class StorageCorruption(OrchestratorError):
    """A persisted document could not be parsed. Never leaves the store."""

    kind = "storage_corruption"
