"""Durable JSON document store.

Each logical table is one JSON object on disk (``<base_dir>/<name>``)
carrying a ``schema_version`` integer. Writes go through a temp file that
is fsynced and then renamed over the target, so readers never see a
partially written document. A missing or unparsable document reads as a
fresh copy of the caller's default.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import threading
from typing import Any, Callable, Dict

from orchestrator.core.errors import StorageCorruption

logger = logging.getLogger("orchestrator.store")

Document = Dict[str, Any]


class JsonStore:
    """Single-owner store passed explicitly to every component that persists state.

    ``update`` is serialized within this process only. Two controller
    processes writing the same table can still race; the later writer wins.
    """

    def __init__(self, base_dir: str) -> None:
        self.base_dir = base_dir
        self._lock = threading.RLock()
        os.makedirs(base_dir, exist_ok=True)

    def path(self, name: str) -> str:
        return os.path.join(self.base_dir, name)

    def read(self, name: str, default: Document) -> Document:
        try:
            doc = self._load(name)
        except FileNotFoundError:
            return copy.deepcopy(default)
        except StorageCorruption as exc:
            logger.warning("Falling back to default for %s: %s", name, exc)
            return copy.deepcopy(default)

        expected = default.get("schema_version")
        if expected is not None and doc.get("schema_version") != expected:
            logger.info(
                "Normalizing schema_version of %s from %r to %r",
                name, doc.get("schema_version"), expected,
            )
            doc["schema_version"] = expected
        return doc

    def write(self, name: str, document: Document) -> None:
        target = self.path(name)
        tmp_path = f"{target}.tmp"
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with self._lock:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)

    def update(self, name: str, default: Document, fn: Callable[[Document], Document]) -> Document:
        """Read, transform with ``fn`` and write back as one step.

        ``fn`` may mutate and return the document it receives; it is always
        a private copy.
        """
        with self._lock:
            current = self.read(name, default)
            updated = fn(current)
            self.write(name, updated)
            return updated

    def _load(self, name: str) -> Document:
        with open(self.path(name), "r", encoding="utf-8") as f:
            raw = f.read()
        try:
            doc = json.loads(raw)
        except ValueError as exc:
            raise StorageCorruption(f"{name} is not valid JSON ({exc})") from exc
        if not isinstance(doc, dict):
            raise StorageCorruption(f"{name} does not hold a JSON object")
        return doc
