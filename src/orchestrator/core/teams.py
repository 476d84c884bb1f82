from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from orchestrator.core.errors import NotFoundError, PreconditionError, ValidationError
from orchestrator.core.store import JsonStore

TEAMS_FILE = "teams.json"
TEAMS_DEFAULT: Dict[str, Any] = {"schema_version": 1, "teams": []}


class TeamRegistry:
    def __init__(self, store: JsonStore) -> None:
        self.store = store

    def create(self, goal: Any, agents: Any) -> dict:
        if not isinstance(goal, str) or not goal or not isinstance(agents, list) or not agents:
            raise ValidationError("goal and agents[] are required")
        members = []
        for agent in agents:
            if not isinstance(agent, dict) or not agent.get("name") or not agent.get("role"):
                raise ValidationError("every agent needs a name and a role")
            members.append({k: agent[k] for k in ("name", "role", "model") if agent.get(k)})
        team = {
            "id": f"team-{uuid.uuid4().hex[:8]}",
            "goal": goal,
            "agents": members,
            "status": "active",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        def _append(doc: dict) -> dict:
            doc.setdefault("teams", []).append(team)
            return doc

        self.store.update(TEAMS_FILE, TEAMS_DEFAULT, _append)
        return team

    def status(self, team_id: Optional[str] = None) -> List[dict]:
        teams = self.store.read(TEAMS_FILE, TEAMS_DEFAULT).get("teams", [])
        if team_id:
            match = [t for t in teams if t.get("id") == team_id]
            if not match:
                raise NotFoundError(f'Team "{team_id}" not found', team_id=team_id)
            return match
        return [t for t in teams if t.get("status") == "active"]

    def dissolve(self, team_id: Any) -> dict:
        if not isinstance(team_id, str) or not team_id:
            raise ValidationError("team_id is required")
        found: Dict[str, dict] = {}

        def _dissolve(doc: dict) -> dict:
            for team in doc.setdefault("teams", []):
                if team.get("id") != team_id:
                    continue
                found["team"] = team
                if team.get("status") == "active":
                    team["status"] = "dissolved"
                    team["completed_at"] = datetime.now(timezone.utc).isoformat()
                    found["dissolved"] = team
                break
            return doc

        self.store.update(TEAMS_FILE, TEAMS_DEFAULT, _dissolve)
        if "team" not in found:
            raise NotFoundError(f'Team "{team_id}" not found', team_id=team_id)
        if "dissolved" not in found:
            status = found["team"].get("status", "unknown")
            raise PreconditionError(f'Team "{team_id}" is already {status}', status=status)
        return found["dissolved"]
