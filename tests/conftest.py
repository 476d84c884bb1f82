from __future__ import annotations

import os
import stat

import pytest

from orchestrator.core import logging_config
from orchestrator.core.config import Settings
from orchestrator.core.ledger import TaskLedger
from orchestrator.core.markers import MarkerChannel
from orchestrator.core.store import JsonStore
from orchestrator.core.supervisor import DispatchSupervisor

# Stand-in for the real dispatch wrapper. The prompt selects the behaviour:
# "exit:N" exits with N, "sleep:N" sleeps first, anything else succeeds and
# writes "hello from <task id>" to the --output path.
WRAPPER_SCRIPT = """#!/usr/bin/env bash
target="$1"; session="$2"; workdir="$3"; prompt="$4"
shift 4
output=""
flags=""
while [ $# -gt 0 ]; do
  case "$1" in
    --output) output="$2"; shift 2 ;;
    --timeout) flags="$flags timeout=$2"; shift 2 ;;
    *) flags="$flags $1"; shift ;;
  esac
done
printf '%s' "$prompt" > "$session/argv-prompt.txt"
printf '%s' "$flags" > "$session/flags.txt"
case "$prompt" in
  exit:*) exit "${prompt#exit:}" ;;
  sleep:*) sleep "${prompt#sleep:}" ;;
esac
printf 'hello from %s\\n' "$ORCH_TASK_ID" > "$output"
"""


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    monkeypatch.setenv("ORCH_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(logging_config, "_log_dir", None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    wrapper = tmp_path / "dispatch-wrapper.sh"
    wrapper.write_text(WRAPPER_SCRIPT)
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR)
    sessions = tmp_path / "sessions"
    os.makedirs(sessions, exist_ok=True)
    return Settings(
        log_level="debug",
        log_dir=str(tmp_path / "logs"),
        storage_dir=str(tmp_path / "store"),
        sessions_dir=str(sessions),
        wrapper_path=str(wrapper),
        wrapper_shell="bash",
        bridge_config_path=str(tmp_path / "bridge-config.json"),
        skills_dir=str(tmp_path / "skills"),
        mcp_token=None,
        host="127.0.0.1",
        port=0,
        clear_logs_on_launch=False,
    )


@pytest.fixture
def store(settings) -> JsonStore:
    return JsonStore(settings.storage_dir)


@pytest.fixture
def ledger(store) -> TaskLedger:
    return TaskLedger(store)


@pytest.fixture
def markers() -> MarkerChannel:
    return MarkerChannel()


@pytest.fixture
def supervisor(ledger, markers, settings) -> DispatchSupervisor:
    return DispatchSupervisor(ledger, markers, settings)
