"""Out-of-band status channel between a worker and the controller.

Each task owns one marker file, ``.task-<id>.state``, inside its session
directory. It holds a single status token and nothing else. Workers (or
the wrapper) may overwrite it with a terminal status; the controller
only consults it to detect a stale ledger row.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger("orchestrator.markers")

MARKER_STATUSES = {"created", "running", "completed", "failed", "cancelled", "timeout"}


class MarkerChannel:
    @staticmethod
    def path(session_path: str, task_id: str) -> str:
        return os.path.join(session_path, f".task-{task_id}.state")

    def write(self, session_path: str, task_id: str, status: str) -> None:
        if status not in MARKER_STATUSES:
            raise ValueError(f"Invalid marker status: {status}")
        with open(self.path(session_path, task_id), "w", encoding="utf-8") as f:
            f.write(status)

    def read(self, session_path: str, task_id: str) -> Optional[str]:
        """Return the marker token, or None when absent or unreadable."""
        try:
            with open(self.path(session_path, task_id), "r", encoding="utf-8") as f:
                token = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read marker for %s: %s", task_id, exc)
            return None
        if token not in MARKER_STATUSES:
            logger.warning("Ignoring unknown marker token %r for %s", token, task_id)
            return None
        return token
