"""Persisted ledger of dispatch tasks.

The ledger (``dispatches.json``) is the single source of truth for the
status callers see. Marker files and the OS process table are only used
to notice that a ledger row has gone stale.

State machine::

    created -> running -> {completed | failed | cancelled | timeout}

Every status change goes through :meth:`TaskLedger.transition`, which
applies the change inside the store's update function only when the row
is still in one of the expected states.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
import uuid

from orchestrator.core.errors import NotFoundError
from orchestrator.core.store import JsonStore

logger = logging.getLogger("orchestrator.ledger")

LEDGER_FILE = "dispatches.json"
LEDGER_DEFAULT: Dict[str, Any] = {"schema_version": 1, "tasks": []}

NON_TERMINAL = frozenset({"created", "running"})
TERMINAL = frozenset({"completed", "failed", "cancelled", "timeout"})
TASK_STATUSES = NON_TERMINAL | TERMINAL

INPUT_LIMIT = 500


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return f"dsp-{uuid.uuid4().hex[:8]}"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Naive timestamps are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class DispatchTask:
    """One attempt to run an external worker."""
    id: str
    target: str
    input: str                          # truncated copy; full prompt is in the session's prompt.txt
    session_path: str
    output_path: str
    options: Dict[str, Any] = field(default_factory=dict)
    status: str = "created"
    created_at: datetime = field(default_factory=_now)

    pid: Optional[int] = None
    exit_code: Optional[int] = None
    completed_at: Optional[datetime] = None
    duration_s: Optional[float] = None
    error: Optional[str] = None
    output: Optional[str] = None
    retry_of: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target": self.target,
            "input": self.input,
            "options": dict(self.options),
            "session_path": self.session_path,
            "output_path": self.output_path,
            "status": self.status,
            "created_at": _ts(self.created_at),
            "pid": self.pid,
            "exit_code": self.exit_code,
            "completed_at": _ts(self.completed_at),
            "duration_s": self.duration_s,
            "error": self.error,
            "output": self.output,
            "retry_of": self.retry_of,
        }

    @classmethod
    def from_dict(cls, d: dict) -> DispatchTask:
        return cls(
            id=d["id"],
            target=d["target"],
            input=d.get("input", ""),
            options=d.get("options") or {},
            session_path=d["session_path"],
            output_path=d["output_path"],
            status=d.get("status", "created"),
            created_at=_parse_ts(d.get("created_at")) or _now(),
            pid=d.get("pid"),
            exit_code=d.get("exit_code"),
            completed_at=_parse_ts(d.get("completed_at")),
            duration_s=d.get("duration_s"),
            error=d.get("error"),
            output=d.get("output"),
            retry_of=d.get("retry_of"),
        )


class TaskLedger:
    def __init__(self, store: JsonStore) -> None:
        self.store = store

    # ── Reads ────────────────────────────────────────────────

    def all(self) -> List[DispatchTask]:
        """Every parseable row, in creation order."""
        doc = self.store.read(LEDGER_FILE, LEDGER_DEFAULT)
        tasks: List[DispatchTask] = []
        for row in doc.get("tasks", []):
            try:
                tasks.append(DispatchTask.from_dict(row))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed ledger row %r: %s", row.get("id") if isinstance(row, dict) else row, exc)
        return tasks

    def get(self, task_id: str) -> Optional[DispatchTask]:
        for task in self.all():
            if task.id == task_id:
                return task
        return None

    def require(self, task_id: str) -> DispatchTask:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f'Task "{task_id}" not found', task_id=task_id)
        return task

    def list(
        self,
        target: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> Tuple[List[DispatchTask], int]:
        """Newest first, filtered and capped. Returns ``(tasks, total_rows)``."""
        tasks = self.all()
        total = len(tasks)
        selected = list(reversed(tasks))
        if target:
            selected = [t for t in selected if t.target == target]
        if status:
            selected = [t for t in selected if t.status == status]
        return selected[: max(limit, 0)], total

    def non_terminal(self) -> List[DispatchTask]:
        return [t for t in self.all() if t.status in NON_TERMINAL]

    # ── Writes ───────────────────────────────────────────────

    def add(self, task: DispatchTask) -> DispatchTask:
        def _append(doc: dict) -> dict:
            tasks = doc.setdefault("tasks", [])
            if any(isinstance(r, dict) and r.get("id") == task.id for r in tasks):
                raise ValueError(f"Duplicate task id: {task.id}")
            tasks.append(task.to_dict())
            return doc

        self.store.update(LEDGER_FILE, LEDGER_DEFAULT, _append)
        logger.info("Ledger row %s created (target=%s status=%s)", task.id, task.target, task.status)
        return task

    def transition(
        self,
        task_id: str,
        expected: Iterable[str],
        **changes: Any,
    ) -> Tuple[DispatchTask, bool]:
        """Apply ``changes`` only if the row's status is still in ``expected``.

        Returns the row as stored after the call and whether the change was
        applied. Raises :class:`NotFoundError` if the row does not exist.
        """
        allowed = frozenset(expected)
        new_status = changes.get("status")
        if new_status is not None and new_status not in TASK_STATUSES:
            raise ValueError(f"Invalid status: {new_status}")

        outcome: Dict[str, Any] = {}

        def _guarded(doc: dict) -> dict:
            rows = doc.setdefault("tasks", [])
            for i, row in enumerate(rows):
                if not isinstance(row, dict) or row.get("id") != task_id:
                    continue
                current = DispatchTask.from_dict(row)
                if current.status in allowed:
                    current = replace(current, **changes)
                    rows[i] = current.to_dict()
                    outcome["applied"] = True
                outcome["task"] = current
                break
            return doc

        self.store.update(LEDGER_FILE, LEDGER_DEFAULT, _guarded)
        if "task" not in outcome:
            raise NotFoundError(f'Task "{task_id}" not found', task_id=task_id)

        applied = outcome.get("applied", False)
        task = outcome["task"]
        if applied:
            logger.info("Task %s -> %s", task_id, task.status)
        else:
            logger.debug(
                "Transition of %s skipped: status %s not in %s",
                task_id, task.status, sorted(allowed),
            )
        return task, applied
