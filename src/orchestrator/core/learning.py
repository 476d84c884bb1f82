"""Per-skill learnings that can later be folded into a skill's SKILL.md."""
from __future__ import annotations

from datetime import datetime, timezone
import os
from typing import Any, Dict, List
import uuid

from orchestrator.core.errors import NotFoundError, ValidationError
from orchestrator.core.store import JsonStore

LEARNINGS_FILE = "learnings.json"
LEARNINGS_DEFAULT: Dict[str, Any] = {"schema_version": 1, "skills": {}}


class LearningJournal:
    def __init__(self, store: JsonStore, skills_dir: str) -> None:
        self.store = store
        self.skills_dir = skills_dir

    def skill_file(self, skill: str) -> str:
        return os.path.join(os.path.expanduser(self.skills_dir), skill, "SKILL.md")

    def note(self, skill: Any, observation: Any) -> dict:
        if not isinstance(skill, str) or not skill or not isinstance(observation, str) or not observation:
            raise ValidationError("skill and observation are required")
        learning = {
            "id": f"lrn-{uuid.uuid4().hex[:8]}",
            "observation": observation,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "folded": False,
        }

        def _note(doc: dict) -> dict:
            entry = doc.setdefault("skills", {}).setdefault(skill, {"observations": []})
            entry.setdefault("observations", []).append(learning)
            return doc

        self.store.update(LEARNINGS_FILE, LEARNINGS_DEFAULT, _note)
        return learning

    def skills(self) -> Dict[str, List[dict]]:
        doc = self.store.read(LEARNINGS_FILE, LEARNINGS_DEFAULT)
        return {name: data.get("observations", []) for name, data in doc.get("skills", {}).items()}

    def fold(self, skill: Any) -> List[dict]:
        """Mark every unfolded observation of ``skill`` as folded and return them.

        Returns an empty list when everything was already folded.
        """
        if not isinstance(skill, str) or not skill:
            raise ValidationError("skill is required")
        folded: List[dict] = []
        known: Dict[str, bool] = {}

        def _fold(doc: dict) -> dict:
            entry = doc.setdefault("skills", {}).get(skill)
            if entry is None:
                return doc
            known["skill"] = True
            for obs in entry.get("observations", []):
                if not obs.get("folded"):
                    obs["folded"] = True
                    folded.append(dict(obs))
            return doc

        self.store.update(LEARNINGS_FILE, LEARNINGS_DEFAULT, _fold)
        if not known:
            raise NotFoundError(f'No learnings for skill "{skill}"', skill=skill)
        return folded
