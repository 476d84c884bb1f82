"""Reconciliation of stale ledger rows and startup orphan recovery.

A row can say ``running`` after the worker is long gone: the controller
may have restarted, or the worker may have reported through its marker
file only. Reconciliation resolves such a row from, in order, the marker
file, a zero-signal liveness probe on the recorded pid, and the presence
of the output artifact.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable, List, Optional

from orchestrator.core.audit import log_event
from orchestrator.core.ledger import NON_TERMINAL, TERMINAL, DispatchTask, TaskLedger, _now
from orchestrator.core.markers import MarkerChannel
from orchestrator.core.output import read_output

logger = logging.getLogger("orchestrator.recovery")

EXITED_WITHOUT_MARKER = "Process exited without marker"
ORPHANED_ON_STARTUP = "Orphaned task recovered on startup (process not alive)"
MARKER_REPORTED_FAILURE = "Worker reported failure via marker"


def pid_alive(pid: Optional[int]) -> bool:
    """Zero-signal probe. A process we may not signal still exists."""
    if not pid or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _duration(task: DispatchTask) -> float:
    return round((_now() - task.created_at).total_seconds(), 1)


class Reconciler:
    def __init__(self, ledger: TaskLedger, markers: MarkerChannel) -> None:
        self.ledger = ledger
        self.markers = markers

    def reconcile(
        self,
        task: DispatchTask,
        expected: Iterable[str] = ("running",),
        dead_error: str = EXITED_WITHOUT_MARKER,
    ) -> DispatchTask:
        """Resolve ``task`` against marker and process evidence.

        Rows outside ``expected`` (terminal rows in particular) are returned
        untouched, so calling this twice never changes anything further.
        """
        allowed = frozenset(expected)
        if task.status not in allowed:
            return task

        marker = self.markers.read(task.session_path, task.id)
        if marker in TERMINAL:
            changes = {"status": marker, "completed_at": _now(), "duration_s": _duration(task)}
            if marker == "completed":
                changes["output"] = read_output(task.output_path)
            elif marker == "failed" and not task.error:
                changes["error"] = MARKER_REPORTED_FAILURE
            updated, applied = self.ledger.transition(task.id, allowed, **changes)
            if applied:
                logger.info("Task %s adopted marker status %s", task.id, marker)
            return updated

        if pid_alive(task.pid):
            return task

        output = read_output(task.output_path)
        if output is not None:
            updated, applied = self.ledger.transition(
                task.id, allowed,
                status="completed", output=output,
                completed_at=_now(), duration_s=_duration(task),
            )
        else:
            updated, applied = self.ledger.transition(
                task.id, allowed,
                status="failed", error=dead_error,
                completed_at=_now(), duration_s=_duration(task),
            )
        if applied:
            self._mark(updated)
            logger.warning("Task %s (pid=%s) is gone; marked %s", task.id, task.pid, updated.status)
        return updated

    def _mark(self, task: DispatchTask) -> None:
        try:
            self.markers.write(task.session_path, task.id, task.status)
        except OSError as exc:
            logger.warning("Could not write marker for %s: %s", task.id, exc)

    def recover_orphans(self) -> List[DispatchTask]:
        """Resolve every ``created``/``running`` row left behind by a previous run.

        Returns the rows that changed. Rows whose process is still alive stay
        ``running``.
        """
        pending = self.ledger.non_terminal()
        if not pending:
            return []
        logger.info("Recovery scan: %d non-terminal dispatch(es)", len(pending))

        changed: List[DispatchTask] = []
        for task in pending:
            try:
                session_exists = os.path.isdir(task.session_path)
                updated = self.reconcile(task, expected=NON_TERMINAL, dead_error=ORPHANED_ON_STARTUP)
            except Exception:  # noqa: BLE001
                logger.exception("Recovery of %s failed; leaving it for the next scan", task.id)
                continue
            if updated.status == task.status:
                continue
            changed.append(updated)
            log_event(self.ledger.store.base_dir, "dispatch.recovered", {
                "task_id": task.id,
                "from": task.status,
                "to": updated.status,
                "session_exists": session_exists,
            })
        logger.info("Recovery scan finished: %d row(s) resolved", len(changed))
        return changed
