"""Launch and supervise detached dispatch workers.

Each dispatch runs the external wrapper script in its own session
(``start_new_session=True``) so it survives controller restarts. The
controller never blocks on a worker: ``dispatch`` returns once the
process exists, and a daemon watcher thread records the exit.

The wrapper is invoked as::

    <shell> <wrapper> <target> <session_path> <workdir> <prompt>
            [--yolo] [--timeout N] [--follow-up] --output <output_path>

and also receives ``ORCH_TASK_ID``, ``ORCH_SESSION_DIR``, ``ORCH_PROMPT``
and ``ORCH_PROMPT_FILE`` in its environment. The prompt is only ever an
argv element or an environment value; no shell parses it.
"""
from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import threading
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from orchestrator.core.audit import log_event
from orchestrator.core.config import Settings
from orchestrator.core.errors import PreconditionError, SpawnError, ValidationError
from orchestrator.core.ledger import (
    INPUT_LIMIT,
    NON_TERMINAL,
    DispatchTask,
    TaskLedger,
    _now,
    new_task_id,
)
from orchestrator.core.markers import MarkerChannel
from orchestrator.core.output import read_output, shorten
from orchestrator.core.recovery import Reconciler

logger = logging.getLogger("orchestrator.supervisor")

TARGET_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
PROMPT_FILE = "prompt.txt"
# Larger prompts travel only through ORCH_PROMPT_FILE
ARGV_PROMPT_LIMIT = 64 * 1024
RETRYABLE = frozenset({"failed", "cancelled"})


class DispatchOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    yolo: bool = False
    timeout: Optional[int] = Field(default=None, gt=0)
    workdir: Optional[str] = None
    follow_up: bool = False


def _describe_pydantic_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "options"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class DispatchSupervisor:
    """Dispatch, inspect, cancel and retry worker processes.

    The ledger is the only state that matters across restarts; the
    in-memory maps below only track watchers owned by this process.
    """

    def __init__(
        self,
        ledger: TaskLedger,
        markers: MarkerChannel,
        settings: Settings,
        reconciler: Optional[Reconciler] = None,
    ) -> None:
        self.ledger = ledger
        self.markers = markers
        self.settings = settings
        self.reconciler = reconciler or Reconciler(ledger, markers)
        self._lock = threading.Lock()
        self._watchers: Dict[str, threading.Thread] = {}
        self._processes: Dict[str, subprocess.Popen] = {}

    @property
    def audit_dir(self) -> str:
        return self.ledger.store.base_dir

    # ── Configuration ────────────────────────────────────────

    def known_targets(self) -> Optional[List[str]]:
        """Target names from the bridge config, or None when there is no usable config."""
        path = self.settings.bridge_config_path
        if not path or not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable bridge config %s: %s", path, exc)
            return None
        models = config.get("models") if isinstance(config, dict) else None
        if not isinstance(models, dict):
            return None
        return sorted(models)

    # ── Validation ───────────────────────────────────────────

    def _validate(self, target: Any, prompt: Any, options: Any) -> DispatchOptions:
        if not isinstance(target, str) or not target:
            raise ValidationError("target is required")
        if not TARGET_PATTERN.match(target):
            raise ValidationError(
                f'Invalid target "{target}": use letters, digits, "-" and "_" only',
                target=target,
            )
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("prompt is required")
        if "\x00" in prompt:
            raise ValidationError("prompt must not contain NUL characters")
        if options is not None and not isinstance(options, dict):
            raise ValidationError("options must be an object")
        try:
            opts = DispatchOptions.model_validate(options or {})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid options: {_describe_pydantic_error(exc)}") from exc
        if opts.workdir is not None:
            workdir = os.path.expanduser(opts.workdir)
            if not os.path.isdir(workdir):
                raise ValidationError(f"workdir does not exist: {opts.workdir}", workdir=opts.workdir)
            opts.workdir = workdir

        known = self.known_targets()
        if known is not None and target not in known:
            raise ValidationError(
                f'Unknown target "{target}". Available: {", ".join(known)}',
                target=target,
                available=known,
            )
        return opts

    # ── Operations ───────────────────────────────────────────

    def dispatch(
        self,
        target: Any,
        prompt: Any,
        options: Any = None,
        retry_of: Optional[str] = None,
    ) -> DispatchTask:
        """Start a worker and return its ledger row without waiting for it.

        Raises ValidationError or SpawnError (missing wrapper) before any row
        exists. A refused spawn leaves a ``failed`` row and raises SpawnError.
        """
        opts = self._validate(target, prompt, options)

        wrapper = os.path.expanduser(self.settings.wrapper_path)
        if not os.path.isfile(wrapper):
            raise SpawnError(f"Dispatch wrapper not found at {wrapper}", wrapper=wrapper)

        task_id = new_task_id()
        session_path = os.path.join(self.settings.sessions_dir, task_id)
        os.makedirs(session_path, exist_ok=True)
        prompt_file = os.path.join(session_path, PROMPT_FILE)
        with open(prompt_file, "w", encoding="utf-8") as f:
            f.write(prompt)

        task = DispatchTask(
            id=task_id,
            target=target,
            input=shorten(prompt, INPUT_LIMIT),
            options=opts.model_dump(exclude_none=True),
            session_path=session_path,
            output_path=os.path.join(session_path, f"{target}-turn-0001.md"),
            retry_of=retry_of,
        )
        self.ledger.add(task)
        self.markers.write(session_path, task_id, "created")
        log_event(self.audit_dir, "dispatch.created", {
            "task_id": task_id,
            "target": target,
            "retry_of": retry_of,
        })

        argv, env = self._command(task, prompt, prompt_file, opts)
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            error = f"Failed to spawn: {exc}"
            failed, _ = self.ledger.transition(
                task_id, {"created"},
                status="failed", error=error, completed_at=_now(), duration_s=0.0,
            )
            self._write_marker(failed)
            log_event(self.audit_dir, "dispatch.spawn_failed", {"task_id": task_id, "error": error})
            logger.error("Dispatch %s failed to spawn: %s", task_id, exc)
            raise SpawnError(f"Dispatch failed: {error}", task_id=task_id, status="failed") from exc

        running, applied = self.ledger.transition(task_id, {"created"}, status="running", pid=proc.pid)
        if not applied:
            # Resolved (e.g. cancelled) while spawning; the worker must not outlive it
            logger.info("Task %s became %s during spawn; stopping pid %s", task_id, running.status, proc.pid)
            _terminate_group(proc.pid)
            return running
        self.markers.write(session_path, task_id, "running")
        self._start_watcher(running, proc)
        logger.info("Dispatched %s to %s (pid=%s)", task_id, target, proc.pid)
        return running

    def get_result(self, task_id: str) -> DispatchTask:
        task = self.ledger.require(task_id)
        if task.status == "running":
            task = self.reconciler.reconcile(task)
        return task

    def cancel(self, task_id: str) -> DispatchTask:
        """Mark the task cancelled and send SIGTERM to its process group.

        Does not wait for the process to die. The ledger row is switched
        first so a fast exit cannot be recorded as a failure.
        """
        task = self.ledger.require(task_id)
        if task.status not in NON_TERMINAL:
            raise PreconditionError(
                f'Task "{task_id}" is {task.status}, cannot cancel',
                status=task.status,
                task_id=task_id,
            )
        cancelled, applied = self.ledger.transition(
            task_id, NON_TERMINAL,
            status="cancelled", completed_at=_now(),
            duration_s=round((_now() - task.created_at).total_seconds(), 1),
        )
        if not applied:
            raise PreconditionError(
                f'Task "{task_id}" is {cancelled.status}, cannot cancel',
                status=cancelled.status,
                task_id=task_id,
            )
        if task.pid:
            _terminate_group(task.pid)
        self._write_marker(cancelled)
        log_event(self.audit_dir, "dispatch.cancelled", {"task_id": task_id, "pid": task.pid})
        return cancelled

    def retry(self, task_id: str) -> DispatchTask:
        """Dispatch the failed or cancelled task again under a new id."""
        task = self.ledger.require(task_id)
        if task.status not in RETRYABLE:
            raise PreconditionError(
                f'Task "{task_id}" is {task.status}, can only retry failed/cancelled tasks',
                status=task.status,
                task_id=task_id,
            )
        prompt = self._original_prompt(task)
        new_task = self.dispatch(task.target, prompt, dict(task.options), retry_of=task.id)
        log_event(self.audit_dir, "dispatch.retried", {"task_id": task_id, "new_task_id": new_task.id})
        return new_task

    def list(
        self,
        target: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> Tuple[List[DispatchTask], int]:
        return self.ledger.list(target=target, status=status, limit=limit)

    # ── Watchers ─────────────────────────────────────────────

    def wait(self, task_id: str, timeout: Optional[float] = None) -> bool:
        """Block until this process's watcher for ``task_id`` has recorded the exit."""
        with self._lock:
            thread = self._watchers.get(task_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def active_watchers(self) -> int:
        with self._lock:
            return sum(1 for t in self._watchers.values() if t.is_alive())

    def _start_watcher(self, task: DispatchTask, proc: subprocess.Popen) -> None:
        thread = threading.Thread(
            target=self._watch,
            args=(task, proc),
            name=f"dispatch-{task.id}",
            daemon=True,
        )
        with self._lock:
            self._watchers[task.id] = thread
            self._processes[task.id] = proc
        thread.start()

    def _watch(self, task: DispatchTask, proc: subprocess.Popen) -> None:
        try:
            exit_code = proc.wait()
            status = "completed" if exit_code == 0 else "failed"
            updated, applied = self.ledger.transition(
                task.id, {"running"},
                status=status,
                exit_code=exit_code,
                completed_at=_now(),
                duration_s=round((_now() - task.created_at).total_seconds(), 1),
                output=read_output(task.output_path),
                error=None if exit_code == 0 else f"Process exited with code {exit_code}",
            )
            if not applied:
                logger.info("Exit of %s (code %s) ignored; task is already %s", task.id, exit_code, updated.status)
                return
            self._write_marker(updated)
            log_event(self.audit_dir, "dispatch.exited", {
                "task_id": task.id,
                "exit_code": exit_code,
                "status": status,
            })
            logger.info("Task %s exited with code %s -> %s", task.id, exit_code, status)
        except Exception:  # noqa: BLE001
            logger.exception("Exit watcher for %s failed", task.id)
        finally:
            with self._lock:
                self._processes.pop(task.id, None)

    # ── Helpers ──────────────────────────────────────────────

    def _command(
        self,
        task: DispatchTask,
        prompt: str,
        prompt_file: str,
        opts: DispatchOptions,
    ) -> Tuple[List[str], Dict[str, str]]:
        inline_prompt = prompt if len(prompt.encode("utf-8")) <= ARGV_PROMPT_LIMIT else ""
        workdir = opts.workdir or os.path.expanduser("~")
        argv = [
            self.settings.wrapper_shell,
            os.path.expanduser(self.settings.wrapper_path),
            task.target,
            task.session_path,
            workdir,
            inline_prompt,
        ]
        if opts.yolo:
            argv.append("--yolo")
        if opts.timeout:
            argv.extend(["--timeout", str(opts.timeout)])
        if opts.follow_up:
            argv.append("--follow-up")
        argv.extend(["--output", task.output_path])

        env = dict(os.environ)
        env.update({
            "ORCH_TASK_ID": task.id,
            "ORCH_SESSION_DIR": task.session_path,
            "ORCH_PROMPT": inline_prompt,
            "ORCH_PROMPT_FILE": prompt_file,
        })
        return argv, env

    def _original_prompt(self, task: DispatchTask) -> str:
        path = os.path.join(task.session_path, PROMPT_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError:
            logger.warning("Prompt artifact for %s is gone; retrying with the stored excerpt", task.id)
            return task.input

    def _write_marker(self, task: DispatchTask) -> None:
        try:
            self.markers.write(task.session_path, task.id, task.status)
        except OSError as exc:
            logger.warning("Could not write %s marker for %s: %s", task.status, task.id, exc)


def _terminate_group(pid: int) -> None:
    """SIGTERM the process group led by ``pid``, else the process alone."""
    killpg = getattr(os, "killpg", None)
    if killpg is not None:
        try:
            killpg(pid, signal.SIGTERM)
            return
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.debug("killpg(%s) failed (%s); signalling the process", pid, exc)
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    except OSError as exc:
        logger.warning("Could not signal pid %s: %s", pid, exc)
