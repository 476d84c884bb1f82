"""Contextual reminders.

A reminder fires when the caller's current context matches its trigger:
``always`` matches everything, ``keyword`` and ``event`` match when their
value appears (case-insensitively) in the context string.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from orchestrator.core.errors import NotFoundError, ValidationError
from orchestrator.core.store import JsonStore

REMINDERS_FILE = "reminders.json"
REMINDERS_DEFAULT: Dict[str, Any] = {"schema_version": 1, "reminders": []}
TRIGGER_TYPES = ("keyword", "event", "always")


def _matches(reminder: dict, context: str) -> bool:
    trigger = reminder.get("trigger") or {}
    kind = trigger.get("type")
    if kind == "always":
        return True
    value = trigger.get("value")
    if kind in ("keyword", "event") and isinstance(value, str) and value:
        return value.lower() in context
    return False


class ReminderBoard:
    def __init__(self, store: JsonStore) -> None:
        self.store = store

    def add(self, trigger: Any, message: Any, context: Optional[str] = None) -> dict:
        if not isinstance(trigger, dict) or not trigger.get("type") or not message:
            raise ValidationError("trigger and message are required")
        if trigger["type"] not in TRIGGER_TYPES:
            raise ValidationError(
                f'Invalid trigger type "{trigger["type"]}". Use one of: {", ".join(TRIGGER_TYPES)}'
            )
        if trigger["type"] != "always" and not trigger.get("value"):
            raise ValidationError(f'A {trigger["type"]} trigger needs a value')
        if trigger.get("value") and not isinstance(trigger["value"], str):
            raise ValidationError(f'A {trigger["type"]} trigger needs a string value')

        reminder = {
            "id": f"rem-{uuid.uuid4().hex[:8]}",
            "trigger": {k: trigger[k] for k in ("type", "value") if trigger.get(k)},
            "message": message,
            "context": context,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "fired_count": 0,
        }

        def _append(doc: dict) -> dict:
            doc.setdefault("reminders", []).append(reminder)
            return doc

        self.store.update(REMINDERS_FILE, REMINDERS_DEFAULT, _append)
        return reminder

    def list(
        self,
        trigger_type: Optional[str] = None,
        context: Optional[str] = None,
        limit: int = 20,
    ) -> List[dict]:
        """Reminders, optionally filtered by trigger type.

        With ``context`` only matching reminders are returned and each of
        them has its ``fired_count`` bumped.
        """
        if context:
            return self._fire(trigger_type, context.lower(), limit)
        reminders = self.store.read(REMINDERS_FILE, REMINDERS_DEFAULT).get("reminders", [])
        if trigger_type:
            reminders = [r for r in reminders if r.get("trigger", {}).get("type") == trigger_type]
        return reminders[:limit]

    def _fire(self, trigger_type: Optional[str], context: str, limit: int) -> List[dict]:
        now = datetime.now(timezone.utc).isoformat()
        fired: List[dict] = []

        def _bump(doc: dict) -> dict:
            for reminder in doc.setdefault("reminders", []):
                if trigger_type and reminder.get("trigger", {}).get("type") != trigger_type:
                    continue
                if not _matches(reminder, context):
                    continue
                reminder["fired_count"] = reminder.get("fired_count", 0) + 1
                reminder["last_fired_at"] = now
                fired.append(reminder)
            return doc

        self.store.update(REMINDERS_FILE, REMINDERS_DEFAULT, _bump)
        return fired[:limit]

    def dismiss(self, reminder_id: Any) -> None:
        if not isinstance(reminder_id, str) or not reminder_id:
            raise ValidationError("id is required")
        removed: List[dict] = []

        def _remove(doc: dict) -> dict:
            kept = []
            for r in doc.setdefault("reminders", []):
                (removed if r.get("id") == reminder_id else kept).append(r)
            doc["reminders"] = kept
            return doc

        self.store.update(REMINDERS_FILE, REMINDERS_DEFAULT, _remove)
        if not removed:
            raise NotFoundError(f'Reminder "{reminder_id}" not found', id=reminder_id)
