"""MCP JSON-RPC protocol handler.

Implements the Model Context Protocol request/response cycle
(``initialize``, ``tools/list``, ``tools/call``, ``ping``) independent of
transport; the HTTP gateway and the stdio loop both feed request bodies
into :meth:`MCPProtocolHandler.handle_request`.

Tool groups: context, reminders, workflows, learning, dispatch, teams.
Tool methods return a human-readable string or raise an
:class:`OrchestratorError`; ``tools/call`` turns every failure into an
``isError`` result so nothing escapes to the transport.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Optional

from orchestrator import __version__
from orchestrator.core.context import ContextBook
from orchestrator.core.errors import OrchestratorError, ValidationError
from orchestrator.core.learning import LearningJournal
from orchestrator.core.ledger import TASK_STATUSES, DispatchTask
from orchestrator.core.logging_config import log_mcp_call
from orchestrator.core.output import preview, read_output, shorten
from orchestrator.core.reminders import TRIGGER_TYPES, ReminderBoard
from orchestrator.core.supervisor import DispatchSupervisor
from orchestrator.core.teams import TeamRegistry
from orchestrator.core.templates import TEMPLATES, list_templates, render_template
from orchestrator.core.workflows import WorkflowTracker, render_status

logger = logging.getLogger("orchestrator.mcp.protocol")

PROTOCOL_VERSION = "2025-03-26"
SERVER_NAME = "agent-orchestrator"

# ── Tool definitions (returned by tools/list) ────────────────────

CONTEXT_TOOLS = [
    {
        "name": "set_context",
        "description": "Persist a key-value pair across sessions",
        "inputSchema": {
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "Context key"},
                "value": {"description": "Value to store (any JSON value)"},
            },
            "required": ["key", "value"],
        },
    },
    {
        "name": "get_context",
        "description": "Retrieve one or all session context entries",
        "inputSchema": {
            "type": "object",
            "properties": {"key": {"type": "string", "description": "Specific key (omit for all)"}},
        },
    },
    {
        "name": "clear_context",
        "description": "Remove a session context entry",
        "inputSchema": {
            "type": "object",
            "properties": {"key": {"type": "string"}},
            "required": ["key"],
        },
    },
]

REMINDER_TOOLS = [
    {
        "name": "set_reminder",
        "description": "Create a contextual reminder. Trigger types: keyword (substring match), event (e.g. before_commit, after_error, session_start), always (fires on every check)",
        "inputSchema": {
            "type": "object",
            "properties": {
                "trigger": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": list(TRIGGER_TYPES)},
                        "value": {"type": "string", "description": "Keyword or event name (not needed for 'always')"},
                    },
                    "required": ["type"],
                },
                "message": {"type": "string"},
                "context": {"type": "string", "description": "Optional notes"},
            },
            "required": ["trigger", "message"],
        },
    },
    {
        "name": "list_reminders",
        "description": "List reminders. With context, returns only matching reminders and increments their fired_count",
        "inputSchema": {
            "type": "object",
            "properties": {
                "filter": {"type": "string", "enum": list(TRIGGER_TYPES), "description": "Filter by trigger type"},
                "context": {"type": "string", "description": "Current context to match against"},
                "limit": {"type": "integer", "default": 20},
            },
        },
    },
    {
        "name": "dismiss_reminder",
        "description": "Remove a reminder by ID",
        "inputSchema": {
            "type": "object",
            "properties": {"id": {"type": "string"}},
            "required": ["id"],
        },
    },
]

WORKFLOW_TOOLS = [
    {
        "name": "define_workflow",
        "description": "Create or update a reusable workflow template",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "steps": {"type": "array", "items": {"type": "string"}, "description": "Ordered step descriptions"},
            },
            "required": ["name", "steps"],
        },
    },
    {
        "name": "start_workflow",
        "description": "Begin a workflow from a template or custom steps. Built-in templates: new-skill, multi-model-critique, publish-to-github",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Template name or custom workflow name"},
                "steps": {"type": "array", "items": {"type": "string"}, "description": "Custom steps (override the template)"},
            },
            "required": ["name"],
        },
    },
    {
        "name": "get_workflow_status",
        "description": "Get the current workflow step, progress and notes",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "advance_step",
        "description": "Complete the current workflow step and move to the next",
        "inputSchema": {
            "type": "object",
            "properties": {"notes": {"type": "string", "description": "What was done in this step"}},
        },
    },
]

LEARNING_TOOLS = [
    {
        "name": "note_learning",
        "description": "Record a pattern, gotcha or improvement observation for a skill",
        "inputSchema": {
            "type": "object",
            "properties": {
                "skill": {"type": "string", "description": "Skill name (e.g. 'browser-testing')"},
                "observation": {"type": "string"},
            },
            "required": ["skill", "observation"],
        },
    },
    {
        "name": "get_learnings",
        "description": "Retrieve accumulated learnings for one skill or all skills",
        "inputSchema": {
            "type": "object",
            "properties": {
                "skill": {"type": "string", "description": "Skill name (omit for all)"},
                "limit": {"type": "integer", "default": 20, "description": "Max results per skill"},
            },
        },
    },
    {
        "name": "fold_learnings",
        "description": "Suggest SKILL.md additions from unfolded learnings and mark them folded. Returns text only",
        "inputSchema": {
            "type": "object",
            "properties": {"skill": {"type": "string"}},
            "required": ["skill"],
        },
    },
]

DISPATCH_TOOLS = [
    {
        "name": "dispatch",
        "description": "Send a task to a worker model (e.g. codex, gemini). Returns immediately with a task_id to poll",
        "inputSchema": {
            "type": "object",
            "properties": {
                "target": {"type": "string", "description": "Worker kind, e.g. codex or gemini"},
                "prompt": {"type": "string", "description": "Task prompt"},
                "options": {
                    "type": "object",
                    "properties": {
                        "yolo": {"type": "boolean", "description": "Bypass the worker's safety sandbox"},
                        "timeout": {"type": "integer", "description": "Timeout in seconds"},
                        "workdir": {"type": "string", "description": "Working directory (default: home)"},
                        "follow_up": {"type": "boolean", "description": "Continue the previous conversation"},
                    },
                    "additionalProperties": False,
                },
            },
            "required": ["target", "prompt"],
        },
    },
    {
        "name": "get_dispatch_result",
        "description": "Get the status and output of a dispatched task",
        "inputSchema": {
            "type": "object",
            "properties": {"task_id": {"type": "string"}},
            "required": ["task_id"],
        },
    },
    {
        "name": "cancel_dispatch",
        "description": "Terminate a created or running dispatch task",
        "inputSchema": {
            "type": "object",
            "properties": {"task_id": {"type": "string"}},
            "required": ["task_id"],
        },
    },
    {
        "name": "retry_dispatch",
        "description": "Re-run a failed or cancelled dispatch task under a new task_id",
        "inputSchema": {
            "type": "object",
            "properties": {"task_id": {"type": "string"}},
            "required": ["task_id"],
        },
    },
    {
        "name": "list_dispatches",
        "description": "List dispatch history, newest first",
        "inputSchema": {
            "type": "object",
            "properties": {
                "target": {"type": "string", "description": "Filter by worker kind"},
                "status": {"type": "string", "enum": sorted(TASK_STATUSES)},
                "limit": {"type": "integer", "default": 20},
            },
        },
    },
    {
        "name": "get_dispatch_template",
        "description": "Get a dispatch prompt template. Templates: " + ", ".join(TEMPLATES),
        "inputSchema": {
            "type": "object",
            "properties": {
                "template": {"type": "string", "description": "Template name (omit to list all)"},
                "vars": {
                    "type": "object",
                    "description": "Values for goal, scope, context, constraints, verify_command, lens, questions, other_model",
                    "additionalProperties": {"type": "string"},
                },
            },
        },
    },
]

TEAM_TOOLS = [
    {
        "name": "create_team",
        "description": "Define an agent team with a goal and roles",
        "inputSchema": {
            "type": "object",
            "properties": {
                "goal": {"type": "string"},
                "agents": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "role": {"type": "string"},
                            "model": {"type": "string", "description": "Which model the agent uses"},
                        },
                        "required": ["name", "role"],
                    },
                },
            },
            "required": ["goal", "agents"],
        },
    },
    {
        "name": "get_team_status",
        "description": "Get one team, or all active teams",
        "inputSchema": {
            "type": "object",
            "properties": {"team_id": {"type": "string", "description": "Specific team (omit for all active)"}},
        },
    },
    {
        "name": "dissolve_team",
        "description": "Mark an active team as dissolved",
        "inputSchema": {
            "type": "object",
            "properties": {"team_id": {"type": "string"}},
            "required": ["team_id"],
        },
    },
]

ALL_TOOLS = CONTEXT_TOOLS + REMINDER_TOOLS + WORKFLOW_TOOLS + LEARNING_TOOLS + DISPATCH_TOOLS + TEAM_TOOLS
TOOL_NAMES = frozenset(t["name"] for t in ALL_TOOLS)


class MethodNotFound(ValueError):
    pass


def _required_str(arguments: dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} is required")
    return value


def _optional_str(arguments: dict[str, Any], name: str) -> Optional[str]:
    value = arguments.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def _limit(arguments: dict[str, Any], default: int = 20) -> int:
    value = arguments.get("limit")
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError("limit must be an integer")
    if value < 1:
        raise ValidationError("limit must be at least 1")
    return int(value)


def _display_value(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value)
    return shorten(text, 80)


def _agent_line(agent: dict, indent: str = "") -> str:
    model = f" [{agent['model']}]" if agent.get("model") else ""
    return f"{indent}- **{agent['name']}** ({agent['role']}){model}"


class MCPProtocolHandler:
    """Handles MCP JSON-RPC requests and routes tool calls."""

    def __init__(
        self,
        supervisor: DispatchSupervisor,
        context: ContextBook,
        reminders: ReminderBoard,
        workflows: WorkflowTracker,
        learnings: LearningJournal,
        teams: TeamRegistry,
    ) -> None:
        self.supervisor = supervisor
        self.context = context
        self.reminders = reminders
        self.workflows = workflows
        self.learnings = learnings
        self.teams = teams

    # ── JSON-RPC ─────────────────────────────────────────────

    def handle_request(self, body: Any) -> dict[str, Any]:
        """Process a single JSON-RPC request and return a JSON-RPC response.

        Notifications (no ``id``) get an empty dict back.
        """
        if not isinstance(body, dict):
            return self._error_response(None, -32600, "Invalid Request")
        jsonrpc = body.get("jsonrpc", "2.0")
        method = body.get("method", "")
        params = body.get("params") or {}
        req_id = body.get("id")

        logger.info("MCP request: method=%s id=%s", method, req_id)
        if method != "tools/call":
            log_mcp_call(method=method)

        try:
            result = self._dispatch(method, params)
        except MethodNotFound as exc:
            logger.warning("MCP method not found: %s", method)
            return self._error_response(req_id, -32601, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("MCP method %s failed: %s", method, exc)
            return self._error_response(req_id, -32603, str(exc))

        if req_id is None:
            return {}

        return {"jsonrpc": jsonrpc, "id": req_id, "result": result}

    def _dispatch(self, method: str, params: dict[str, Any]) -> Any:
        if method == "initialize":
            return self._handle_initialize(params)
        if method in ("initialized", "notifications/initialized"):
            return {}
        if method == "tools/list":
            return self._handle_tools_list(params)
        if method == "tools/call":
            return self._handle_tools_call(params)
        if method == "ping":
            return {}
        raise MethodNotFound(f"Unknown method: {method}")

    def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    def _handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": ALL_TOOLS}

    def _handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name", "")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        logger.info("MCP tools/call: %s args=%s", name, json.dumps(arguments, default=str)[:200])

        t0 = time.monotonic()
        try:
            text = self._call_tool(name, arguments)
        except OrchestratorError as exc:
            duration_ms = (time.monotonic() - t0) * 1000
            logger.info("Tool %s rejected: %s", name, exc.message)
            log_mcp_call("tools/call", tool_name=name, tool_args=arguments, duration_ms=duration_ms, error=exc.message)
            return {
                "content": [{"type": "text", "text": f"Error: {exc.message}"}],
                "isError": True,
                "structuredContent": exc.to_payload(),
            }
        except Exception as exc:  # noqa: BLE001
            duration_ms = (time.monotonic() - t0) * 1000
            logger.exception("Tool %s failed", name)
            log_mcp_call("tools/call", tool_name=name, tool_args=arguments, duration_ms=duration_ms, error=str(exc))
            return {
                "content": [{"type": "text", "text": f"Tool error: {exc}"}],
                "isError": True,
            }

        duration_ms = (time.monotonic() - t0) * 1000
        log_mcp_call("tools/call", tool_name=name, tool_args=arguments, duration_ms=duration_ms)
        return {"content": [{"type": "text", "text": text}], "isError": False}

    def _call_tool(self, name: str, arguments: Any) -> str:
        if name not in TOOL_NAMES:
            raise ValidationError(f"Unknown tool: {name}", tool=name)
        if not isinstance(arguments, dict):
            raise ValidationError("arguments must be an object")
        return getattr(self, f"_tool_{name}")(arguments)

    def _error_response(self, req_id: Any, code: int, message: str) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": req_id,
            "error": {"code": code, "message": message},
        }

    # ── Context ──────────────────────────────────────────────

    def _tool_set_context(self, arguments: dict[str, Any]) -> str:
        if "value" not in arguments:
            raise ValidationError("key and value are required")
        key = _required_str(arguments, "key")
        self.context.set(key, arguments["value"])
        return f'Context "{key}" set'

    def _tool_get_context(self, arguments: dict[str, Any]) -> str:
        key = _optional_str(arguments, "key")
        if key:
            entry = self.context.get(key)
            return json.dumps({"key": key, **entry}, indent=2, default=str)
        entries = self.context.all()
        if not entries:
            return "No context entries stored"
        return "\n".join(
            f"- **{k}**: {_display_value(e.get('value'))} _(set {e.get('set_at')})_"
            for k, e in entries.items()
        )

    def _tool_clear_context(self, arguments: dict[str, Any]) -> str:
        key = _required_str(arguments, "key")
        self.context.clear(key)
        return f'Context "{key}" cleared'

    # ── Reminders ────────────────────────────────────────────

    def _tool_set_reminder(self, arguments: dict[str, Any]) -> str:
        reminder = self.reminders.add(
            arguments.get("trigger"),
            arguments.get("message"),
            _optional_str(arguments, "context"),
        )
        trigger = reminder["trigger"]
        value = f'="{trigger["value"]}"' if trigger.get("value") else ""
        return f'Reminder "{reminder["id"]}" created (trigger: {trigger["type"]}{value})'

    def _tool_list_reminders(self, arguments: dict[str, Any]) -> str:
        trigger_type = _optional_str(arguments, "filter")
        if trigger_type and trigger_type not in TRIGGER_TYPES:
            raise ValidationError(f'Invalid filter "{trigger_type}". Use one of: {", ".join(TRIGGER_TYPES)}')
        context = _optional_str(arguments, "context")
        results = self.reminders.list(trigger_type=trigger_type, context=context, limit=_limit(arguments))
        if not results:
            return "No matching reminders for this context" if context else "No reminders set"
        lines = []
        for r in results:
            trigger = r["trigger"]
            label = trigger["type"] + (f'="{trigger["value"]}"' if trigger.get("value") else "")
            lines.append(f"- **{r['id']}** [{label}] {r['message']} _(fired {r.get('fired_count', 0)}x)_")
        return "\n".join(lines)

    def _tool_dismiss_reminder(self, arguments: dict[str, Any]) -> str:
        reminder_id = _required_str(arguments, "id")
        self.reminders.dismiss(reminder_id)
        return f'Reminder "{reminder_id}" dismissed'

    # ── Workflows ────────────────────────────────────────────

    def _tool_define_workflow(self, arguments: dict[str, Any]) -> str:
        template = self.workflows.define(arguments.get("name"), arguments.get("steps"))
        return f'Workflow template "{template["name"]}" defined with {len(template["steps"])} steps'

    def _tool_start_workflow(self, arguments: dict[str, Any]) -> str:
        workflow = self.workflows.start(arguments.get("name"), arguments.get("steps"))
        steps = [s["description"] for s in workflow["steps"]]
        listing = "\n".join(f"{i}. {s}" for i, s in enumerate(steps, start=1))
        return f'Workflow "{workflow["name"]}" started:\n{listing}\n\nCurrent: Step 1: {steps[0]}'

    def _tool_get_workflow_status(self, arguments: dict[str, Any]) -> str:
        workflow = self.workflows.active()
        if not workflow:
            return "No active workflow. Available templates: " + ", ".join(self.workflows.templates())
        return render_status(workflow)

    def _tool_advance_step(self, arguments: dict[str, Any]) -> str:
        workflow, finished = self.workflows.advance(_optional_str(arguments, "notes"))
        total = len(workflow["steps"])
        if finished:
            return f'Workflow "{workflow["name"]}" completed! All {total} steps done.'
        current = workflow["current_step"]
        return (
            f"Step {current} completed. Now on step {current + 1}/{total}: "
            f"{workflow['steps'][current]['description']}"
        )

    # ── Learning ─────────────────────────────────────────────

    def _tool_note_learning(self, arguments: dict[str, Any]) -> str:
        skill = arguments.get("skill")
        learning = self.learnings.note(skill, arguments.get("observation"))
        return f'Learning "{learning["id"]}" recorded for skill "{skill}"'

    def _tool_get_learnings(self, arguments: dict[str, Any]) -> str:
        skill = _optional_str(arguments, "skill")
        limit = _limit(arguments)
        skills = self.learnings.skills()
        if not skills:
            return "No learnings recorded yet"
        names = [skill] if skill else list(skills)
        sections = []
        for name in names:
            observations = skills.get(name)
            if not observations:
                continue
            shown = observations[:limit]
            lines = [
                f"- **{o['id']}**{' [folded]' if o.get('folded') else ''}: {o['observation']} _({o['created_at']})_"
                for o in shown
            ]
            if len(observations) > len(shown):
                lines.append(f"  _...and {len(observations) - len(shown)} more_")
            sections.append(f"### {name} ({len(observations)} learnings)\n" + "\n".join(lines))
        if not sections:
            return f'No learnings for "{skill}"' if skill else "No learnings recorded"
        return "\n\n".join(sections)

    def _tool_fold_learnings(self, arguments: dict[str, Any]) -> str:
        skill = _required_str(arguments, "skill")
        folded = self.learnings.fold(skill)
        if not folded:
            return f'All learnings for "{skill}" are already folded'
        skill_path = self.learnings.skill_file(skill)
        location = (
            f"Current SKILL.md path: {skill_path}"
            if os.path.isfile(skill_path)
            else f"No SKILL.md found at {skill_path}; create one"
        )
        return "\n".join([
            f"## Suggested additions for {skill}/SKILL.md",
            "",
            location,
            "",
            "### Learnings to incorporate:",
            "",
            "\n".join(f"- {o['observation']}" for o in folded),
            "",
            "---",
            f"{len(folded)} observation(s) marked as folded.",
        ])

    # ── Dispatch ─────────────────────────────────────────────

    def _tool_dispatch(self, arguments: dict[str, Any]) -> str:
        target = arguments.get("target", arguments.get("model"))
        task = self.supervisor.dispatch(target, arguments.get("prompt"), arguments.get("options"))
        return (
            f"Dispatched to {task.target}, task_id: **{task.id}** (PID: {task.pid})\n"
            f"Status: {task.status}\nSession: {task.session_path}"
        )

    def _tool_get_dispatch_result(self, arguments: dict[str, Any]) -> str:
        task = self.supervisor.get_result(_required_str(arguments, "task_id"))
        return self._format_task(task)

    def _tool_cancel_dispatch(self, arguments: dict[str, Any]) -> str:
        task = self.supervisor.cancel(_required_str(arguments, "task_id"))
        return f'Task "{task.id}" cancelled'

    def _tool_retry_dispatch(self, arguments: dict[str, Any]) -> str:
        task_id = _required_str(arguments, "task_id")
        task = self.supervisor.retry(task_id)
        return (
            f'Retried "{task_id}" as **{task.id}** on {task.target} (PID: {task.pid})\n'
            f"Session: {task.session_path}"
        )

    def _tool_list_dispatches(self, arguments: dict[str, Any]) -> str:
        target = _optional_str(arguments, "target") or _optional_str(arguments, "model")
        status = _optional_str(arguments, "status")
        if status and status not in TASK_STATUSES:
            raise ValidationError(f'Invalid status "{status}"', status=status)
        tasks, total = self.supervisor.list(target=target, status=status, limit=_limit(arguments))
        if not tasks:
            return "No dispatch tasks found"
        lines = [
            f'- **{t.id}** [{t.target}] {t.status}: "{shorten(t.input, 60)}" _({t.created_at.isoformat()})_'
            for t in tasks
        ]
        lines.append(f"\n_Showing {len(tasks)} of {total} total dispatches_")
        return "\n".join(lines)

    def _tool_get_dispatch_template(self, arguments: dict[str, Any]) -> str:
        name = _optional_str(arguments, "template")
        if not name:
            return list_templates()
        variables = arguments.get("vars") or {}
        if not isinstance(variables, dict):
            raise ValidationError("vars must be an object")
        return render_template(name, variables)

    @staticmethod
    def _format_task(task: DispatchTask) -> str:
        lines = [
            f"**Task**: {task.id}",
            f"**Target**: {task.target}",
            f"**Status**: {task.status}",
            f"**Created**: {task.created_at.isoformat()}",
        ]
        if task.retry_of:
            lines.append(f"**Retry of**: {task.retry_of}")
        if task.completed_at:
            lines.append(f"**Completed**: {task.completed_at.isoformat()}")
        if task.duration_s is not None:
            lines.append(f"**Duration**: {task.duration_s}s")
        if task.exit_code is not None:
            lines.append(f"**Exit code**: {task.exit_code}")
        if task.error:
            lines.append(f"**Error**: {task.error}")
        output = task.output
        if output is None and task.status == "completed":
            output = read_output(task.output_path)
        if output:
            lines.append(f"\n**Output**:\n{preview(output)}")
        elif task.status == "completed":
            lines.append(f"**Output file**: {task.output_path}")
        return "\n".join(lines)

    # ── Teams ────────────────────────────────────────────────

    def _tool_create_team(self, arguments: dict[str, Any]) -> str:
        team = self.teams.create(arguments.get("goal"), arguments.get("agents"))
        agents = "\n".join(_agent_line(a) for a in team["agents"])
        return (
            f'Team "{team["id"]}" created\n**Goal**: {team["goal"]}\n**Agents**:\n{agents}\n\n'
            "Spawn the agents, then track progress with get_team_status."
        )

    def _tool_get_team_status(self, arguments: dict[str, Any]) -> str:
        teams = self.teams.status(_optional_str(arguments, "team_id"))
        if not teams:
            return "No active teams"
        sections = []
        for t in teams:
            agents = "\n".join(_agent_line(a, indent="  ") for a in t.get("agents", []))
            sections.append(
                f"### {t['id']} ({t['status']})\n**Goal**: {t['goal']}\n"
                f"**Created**: {t['created_at']}\n**Agents**:\n{agents}"
            )
        return "\n\n".join(sections)

    def _tool_dissolve_team(self, arguments: dict[str, Any]) -> str:
        team_id = _required_str(arguments, "team_id")
        self.teams.dissolve(team_id)
        return f'Team "{team_id}" dissolved'
