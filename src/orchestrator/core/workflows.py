"""Step-by-step workflows with reusable templates.

At most one workflow is active at a time. Starting a new one is refused
until the active workflow has been advanced through its last step.
"""
from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from orchestrator.core.errors import PreconditionError, ValidationError
from orchestrator.core.store import JsonStore

WORKFLOWS_FILE = "workflows.json"

BUILTIN_TEMPLATES: Dict[str, List[str]] = {
    "new-skill": [
        "Gather examples and requirements",
        "Plan skill structure and SKILL.md",
        "Create skill directory and files",
        "Write SKILL.md with instructions",
        "Test the skill end-to-end",
        "Push to GitHub",
    ],
    "multi-model-critique": [
        "Draft the artifact to review",
        "Dispatch to Codex for critical review",
        "Dispatch to Gemini for parallel review",
        "Synthesize feedback from both models",
        "Revise artifact with feedback",
    ],
    "publish-to-github": [
        "Verify all changes are committed",
        "Run tests and verify passing",
        "Create GitHub repo if needed",
        "Push to remote",
        "Update MEMORY.md with new entry",
    ],
}

WORKFLOWS_DEFAULT: Dict[str, Any] = {
    "schema_version": 1,
    "templates": {name: {"name": name, "steps": steps} for name, steps in BUILTIN_TEMPLATES.items()},
    "active": None,
}

STEP_ICONS = {"completed": "[x]", "in_progress": "[>]", "skipped": "[-]"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_steps(steps: Any) -> List[str]:
    if not isinstance(steps, list):
        return []
    return [s.strip() for s in steps if isinstance(s, str) and s.strip()]


class WorkflowTracker:
    def __init__(self, store: JsonStore) -> None:
        self.store = store

    def _doc(self) -> dict:
        return self.store.read(WORKFLOWS_FILE, WORKFLOWS_DEFAULT)

    def templates(self) -> Dict[str, dict]:
        return self._doc().get("templates", {})

    def active(self) -> Optional[dict]:
        return self._doc().get("active")

    def define(self, name: Any, steps: Any) -> dict:
        cleaned = _clean_steps(steps)
        if not isinstance(name, str) or not name or not cleaned:
            raise ValidationError("name and steps[] are required")
        template = {"name": name, "steps": cleaned}

        def _define(doc: dict) -> dict:
            doc.setdefault("templates", {})[name] = template
            return doc

        self.store.update(WORKFLOWS_FILE, WORKFLOWS_DEFAULT, _define)
        return template

    def start(self, name: Any, steps: Any = None) -> dict:
        if not isinstance(name, str) or not name:
            raise ValidationError("name is required")
        custom = _clean_steps(steps)
        started: Dict[str, Any] = {}

        def _start(doc: dict) -> dict:
            current = doc.get("active")
            if current and not current.get("completed_at"):
                raise PreconditionError(
                    f'Workflow "{current["name"]}" is already active '
                    f'(step {current["current_step"] + 1}/{len(current["steps"])}). '
                    "Complete or advance it first.",
                    status="active",
                )
            templates = doc.setdefault("templates", {})
            if custom:
                descriptions = custom
            elif name in templates:
                descriptions = list(templates[name]["steps"])
            else:
                raise ValidationError(
                    f'No template "{name}" found. Available: {", ".join(templates)}. '
                    "Or provide custom steps[].",
                    available=list(templates),
                )
            workflow = {
                "name": name,
                "current_step": 0,
                "steps": [{"description": d, "status": "pending"} for d in descriptions],
                "started_at": _now_iso(),
            }
            workflow["steps"][0]["status"] = "in_progress"
            doc["active"] = workflow
            started.update(copy.deepcopy(workflow))
            return doc

        self.store.update(WORKFLOWS_FILE, WORKFLOWS_DEFAULT, _start)
        return started

    def advance(self, notes: Optional[str] = None) -> Tuple[dict, bool]:
        """Complete the current step. Returns the workflow and whether it is now finished."""
        result: Dict[str, Any] = {}

        def _advance(doc: dict) -> dict:
            workflow = doc.get("active")
            if not workflow:
                raise PreconditionError("No active workflow", status="none")
            if workflow.get("completed_at"):
                raise PreconditionError("Workflow already completed", status="completed")
            steps = workflow["steps"]
            index = workflow["current_step"]
            steps[index].update({"status": "completed", "completed_at": _now_iso()})
            if notes:
                steps[index]["notes"] = notes
            if index + 1 < len(steps):
                steps[index + 1]["status"] = "in_progress"
                workflow["current_step"] = index + 1
            else:
                workflow["completed_at"] = _now_iso()
            result["workflow"] = copy.deepcopy(workflow)
            return doc

        self.store.update(WORKFLOWS_FILE, WORKFLOWS_DEFAULT, _advance)
        workflow = result["workflow"]
        return workflow, bool(workflow.get("completed_at"))


def render_status(workflow: dict) -> str:
    steps = workflow["steps"]
    total = len(steps)
    done = sum(1 for s in steps if s["status"] == "completed")
    lines = []
    for i, step in enumerate(steps, start=1):
        icon = STEP_ICONS.get(step["status"], "[ ]")
        notes = f" ({step['notes']})" if step.get("notes") else ""
        lines.append(f"{icon} {i}. {step['description']}{notes}")
    state = "Completed" if workflow.get("completed_at") else f"Step {workflow['current_step'] + 1}/{total}"
    return f"**{workflow['name']}** {state} ({done}/{total} done)\n\n" + "\n".join(lines)
