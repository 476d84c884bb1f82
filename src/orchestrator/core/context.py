"""Key-value context that persists across agent sessions."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from orchestrator.core.errors import NotFoundError, ValidationError
from orchestrator.core.store import JsonStore

CONTEXT_FILE = "context.json"
CONTEXT_DEFAULT: Dict[str, Any] = {"schema_version": 1, "entries": {}}


class ContextBook:
    def __init__(self, store: JsonStore) -> None:
        self.store = store

    def set(self, key: Any, value: Any) -> Dict[str, Any]:
        if not isinstance(key, str) or not key:
            raise ValidationError("key is required")
        entry = {"value": value, "set_at": datetime.now(timezone.utc).isoformat()}

        def _set(doc: dict) -> dict:
            doc.setdefault("entries", {})[key] = entry
            return doc

        self.store.update(CONTEXT_FILE, CONTEXT_DEFAULT, _set)
        return entry

    def get(self, key: str) -> Dict[str, Any]:
        entries = self.all()
        if key not in entries:
            raise NotFoundError(f'No context entry for "{key}"', key=key)
        return entries[key]

    def all(self) -> Dict[str, Dict[str, Any]]:
        return self.store.read(CONTEXT_FILE, CONTEXT_DEFAULT).get("entries", {})

    def clear(self, key: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValidationError("key is required")
        found = {}

        def _clear(doc: dict) -> dict:
            entries = doc.setdefault("entries", {})
            if key in entries:
                found["entry"] = entries.pop(key)
            return doc

        self.store.update(CONTEXT_FILE, CONTEXT_DEFAULT, _clear)
        if not found:
            raise NotFoundError(f'No context entry for "{key}"', key=key)
