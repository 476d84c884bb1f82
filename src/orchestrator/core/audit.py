from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from typing import Any, Dict

from orchestrator.core.logging_config import append_to_file, get_audit_log_path

logger = logging.getLogger("orchestrator.audit")


def log_event(data_dir: str, event_type: str, payload: Dict[str, Any]) -> None:
    """Append one structured event to ``<data_dir>/audit.jsonl``."""
    os.makedirs(data_dir, exist_ok=True)
    path = os.path.join(data_dir, "audit.jsonl")
    record: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "type": event_type,
        "payload": payload,
    }
    line = json.dumps(record, default=str)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(line + "\n")
    # Mirror to centralized audit log
    central = get_audit_log_path()
    if os.path.abspath(central) != os.path.abspath(path):
        try:
            append_to_file(central, line)
        except OSError as exc:
            logger.warning("Failed to mirror audit event %s: %s", event_type, exc)
