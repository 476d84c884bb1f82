"""Tests for dispatching, cancelling and retrying real wrapper processes."""
from __future__ import annotations

import json
import os
import re
import signal
import time

import pytest

from orchestrator.core import supervisor as supervisor_module
from orchestrator.core.errors import NotFoundError, PreconditionError, SpawnError, ValidationError
from orchestrator.core.supervisor import ARGV_PROMPT_LIMIT


def _finish(supervisor, task_id: str):
    assert supervisor.wait(task_id, timeout=15), f"{task_id} did not exit in time"
    return supervisor.ledger.get(task_id)


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


class TestDispatch:
    def test_dispatch_runs_and_completes(self, supervisor, markers):
        task = supervisor.dispatch("codex", "say hi")
        assert re.fullmatch(r"dsp-[0-9a-f]{8}", task.id)
        assert task.status == "running"
        assert task.pid

        done = _finish(supervisor, task.id)
        assert done.status == "completed"
        assert done.exit_code == 0
        assert done.output.strip() == f"hello from {task.id}"
        assert done.duration_s is not None
        assert markers.read(done.session_path, done.id) == "completed"

    def test_session_layout(self, supervisor, settings):
        task = supervisor.dispatch("codex", "say hi")
        _finish(supervisor, task.id)
        assert task.session_path == os.path.join(settings.sessions_dir, task.id)
        assert task.output_path.endswith("codex-turn-0001.md")
        assert _read(os.path.join(task.session_path, "prompt.txt")) == "say hi"

    def test_non_zero_exit_is_failure(self, supervisor):
        task = supervisor.dispatch("codex", "exit:3")
        done = _finish(supervisor, task.id)
        assert done.status == "failed"
        assert done.exit_code == 3
        assert done.error == "Process exited with code 3"

    def test_get_result_after_exit(self, supervisor):
        task = supervisor.dispatch("gemini", "say hi")
        _finish(supervisor, task.id)
        result = supervisor.get_result(task.id)
        assert result.status == "completed"
        assert "hello" in result.output

    def test_prompt_with_shell_metacharacters_is_literal(self, supervisor, tmp_path):
        canary = tmp_path / "pwned"
        prompt = f'$(touch {canary}) `touch {canary}`; touch {canary} && echo "$HOME" | cat'
        task = supervisor.dispatch("codex", prompt)
        _finish(supervisor, task.id)
        assert not canary.exists()
        assert _read(os.path.join(task.session_path, "argv-prompt.txt")) == prompt

    def test_flags_are_passed(self, supervisor, tmp_path):
        task = supervisor.dispatch("codex", "say hi", {
            "yolo": True, "timeout": 30, "follow_up": True, "workdir": str(tmp_path),
        })
        _finish(supervisor, task.id)
        flags = _read(os.path.join(task.session_path, "flags.txt"))
        assert "--yolo" in flags
        assert "timeout=30" in flags
        assert "--follow-up" in flags
        assert task.options["timeout"] == 30

    def test_large_prompt_goes_through_prompt_file(self, supervisor):
        prompt = "p" * (ARGV_PROMPT_LIMIT + 1)
        task = supervisor.dispatch("codex", prompt)
        done = _finish(supervisor, task.id)
        assert done.status == "completed"
        assert _read(os.path.join(task.session_path, "argv-prompt.txt")) == ""
        assert _read(os.path.join(task.session_path, "prompt.txt")) == prompt
        assert len(done.input) == 500
        assert done.input.endswith("...")

    def test_dispatch_is_audited(self, supervisor, store):
        task = supervisor.dispatch("codex", "say hi")
        _finish(supervisor, task.id)
        with open(os.path.join(store.base_dir, "audit.jsonl"), encoding="utf-8") as f:
            types = [json.loads(line)["type"] for line in f if line.strip()]
        assert types[:2] == ["dispatch.created", "dispatch.exited"]


class TestDispatchValidation:
    @pytest.mark.parametrize("target", ["", None, "../etc", "co dex", "-x"])
    def test_bad_target(self, supervisor, ledger, target):
        with pytest.raises(ValidationError):
            supervisor.dispatch(target, "say hi")
        assert ledger.all() == []

    def test_empty_prompt(self, supervisor, ledger):
        with pytest.raises(ValidationError):
            supervisor.dispatch("codex", "   ")
        assert ledger.all() == []

    def test_unknown_option(self, supervisor, ledger):
        with pytest.raises(ValidationError):
            supervisor.dispatch("codex", "say hi", {"turbo": True})
        assert ledger.all() == []

    def test_non_positive_timeout(self, supervisor):
        with pytest.raises(ValidationError):
            supervisor.dispatch("codex", "say hi", {"timeout": 0})

    def test_missing_workdir(self, supervisor, tmp_path):
        with pytest.raises(ValidationError):
            supervisor.dispatch("codex", "say hi", {"workdir": str(tmp_path / "nowhere")})

    def test_unknown_target_with_bridge_config(self, supervisor, settings, ledger):
        with open(settings.bridge_config_path, "w", encoding="utf-8") as f:
            json.dump({"models": {"codex": {}, "gemini": {}}}, f)
        with pytest.raises(ValidationError) as excinfo:
            supervisor.dispatch("claude", "say hi")
        assert "codex" in excinfo.value.message
        assert ledger.all() == []
        assert os.listdir(settings.sessions_dir) == []

    def test_known_target_with_bridge_config(self, supervisor, settings):
        with open(settings.bridge_config_path, "w", encoding="utf-8") as f:
            json.dump({"models": {"codex": {}}}, f)
        task = supervisor.dispatch("codex", "say hi")
        assert _finish(supervisor, task.id).status == "completed"

    def test_unreadable_bridge_config_is_ignored(self, supervisor, settings):
        with open(settings.bridge_config_path, "w", encoding="utf-8") as f:
            f.write("{oops")
        assert supervisor.known_targets() is None

    def test_missing_wrapper(self, supervisor, settings, ledger):
        os.remove(settings.wrapper_path)
        with pytest.raises(SpawnError):
            supervisor.dispatch("codex", "say hi")
        assert ledger.all() == []

    def test_refused_spawn_is_recorded(self, supervisor, settings, ledger):
        settings.wrapper_shell = os.path.join(os.path.dirname(settings.wrapper_path), "no-such-shell")
        with pytest.raises(SpawnError) as excinfo:
            supervisor.dispatch("codex", "say hi")
        rows = ledger.all()
        assert len(rows) == 1
        assert rows[0].status == "failed"
        assert rows[0].error.startswith("Failed to spawn")
        assert rows[0].pid is None
        assert excinfo.value.details["task_id"] == rows[0].id


class TestCancel:
    def test_cancel_running(self, supervisor, markers):
        task = supervisor.dispatch("codex", "sleep:30")
        cancelled = supervisor.cancel(task.id)
        assert cancelled.status == "cancelled"
        assert markers.read(task.session_path, task.id) == "cancelled"

        # The watcher sees the SIGTERM exit but must not overwrite the cancel
        assert supervisor.wait(task.id, timeout=15)
        stored = supervisor.ledger.get(task.id)
        assert stored.status == "cancelled"
        assert stored.exit_code is None

    def test_cancel_completed_is_rejected(self, supervisor):
        task = supervisor.dispatch("codex", "say hi")
        _finish(supervisor, task.id)
        with pytest.raises(PreconditionError) as excinfo:
            supervisor.cancel(task.id)
        assert excinfo.value.status == "completed"
        assert "completed" in excinfo.value.message

    def test_cancel_twice(self, supervisor):
        task = supervisor.dispatch("codex", "sleep:30")
        supervisor.cancel(task.id)
        with pytest.raises(PreconditionError):
            supervisor.cancel(task.id)
        supervisor.wait(task.id, timeout=15)

    def test_cancel_during_spawn_stops_worker(self, supervisor, markers, monkeypatch):
        real_write = markers.write
        terminated = []

        def _write(session_path, task_id, status):
            real_write(session_path, task_id, status)
            if status == "created":
                # A cancel lands after the row exists but before it is running
                supervisor.ledger.transition(task_id, {"created"}, status="cancelled")
                real_write(session_path, task_id, "cancelled")

        def _terminate(pid):
            terminated.append(pid)
            real_terminate(pid)

        real_terminate = supervisor_module._terminate_group
        monkeypatch.setattr(markers, "write", _write)
        monkeypatch.setattr(supervisor_module, "_terminate_group", _terminate)

        task = supervisor.dispatch("codex", "sleep:30")
        assert task.status == "cancelled"
        assert task.pid is None
        assert len(terminated) == 1
        assert markers.read(task.session_path, task.id) == "cancelled"
        assert supervisor.active_watchers() == 0
        assert supervisor.ledger.get(task.id).status == "cancelled"

    def test_cancel_unknown(self, supervisor):
        with pytest.raises(NotFoundError):
            supervisor.cancel("dsp-00000000")


class TestRetry:
    def test_retry_failed_creates_new_task(self, supervisor):
        original = supervisor.dispatch("codex", "exit:1")
        _finish(supervisor, original.id)
        retried = supervisor.retry(original.id)
        assert retried.id != original.id
        assert retried.retry_of == original.id
        assert retried.target == original.target
        _finish(supervisor, retried.id)
        assert supervisor.ledger.get(original.id).status == "failed"

    def test_retry_uses_full_prompt(self, supervisor):
        prompt = "exit:1 " + "x" * 800
        original = supervisor.dispatch("codex", prompt)
        assert _finish(supervisor, original.id).status == "failed"
        retried = supervisor.retry(original.id)
        _finish(supervisor, retried.id)
        assert len(retried.input) == 500
        assert _read(os.path.join(retried.session_path, "prompt.txt")) == prompt

    def test_retry_completed_is_rejected(self, supervisor):
        task = supervisor.dispatch("codex", "say hi")
        _finish(supervisor, task.id)
        with pytest.raises(PreconditionError) as excinfo:
            supervisor.retry(task.id)
        assert excinfo.value.status == "completed"


class TestList:
    def test_list_limit_returns_newest(self, supervisor):
        ids = []
        for _ in range(3):
            task = supervisor.dispatch("codex", "say hi")
            ids.append(task.id)
            _finish(supervisor, task.id)
            time.sleep(0.01)
        tasks, total = supervisor.list(limit=1)
        assert total == 3
        assert [t.id for t in tasks] == [ids[-1]]

    def test_list_does_not_reconcile(self, supervisor, ledger, markers):
        task = supervisor.dispatch("codex", "sleep:30")
        markers.write(task.session_path, task.id, "completed")
        tasks, _ = supervisor.list()
        assert tasks[0].status == "running"
        supervisor.cancel(task.id)
        supervisor.wait(task.id, timeout=15)


class TestGetResult:
    def test_unknown_task(self, supervisor):
        with pytest.raises(NotFoundError):
            supervisor.get_result("dsp-ffffffff")

    def test_marker_and_artifact_resolve_running_task(self, supervisor):
        task = supervisor.dispatch("codex", "sleep:30")
        with open(task.output_path, "w", encoding="utf-8") as f:
            f.write("hello")
        supervisor.markers.write(task.session_path, task.id, "completed")
        result = supervisor.get_result(task.id)
        assert result.status == "completed"
        assert "hello" in result.output
        # The process is still sleeping; cancelling a completed row is refused
        with pytest.raises(PreconditionError):
            supervisor.cancel(task.id)
        os.killpg(task.pid, signal.SIGTERM)
        supervisor.wait(task.id, timeout=15)
        assert supervisor.ledger.get(task.id).status == "completed"
