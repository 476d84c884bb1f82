import json
import logging
import os
import tempfile

import pytest

from orchestrator.core import logging_config
from orchestrator.core.audit import log_event


def _lines(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(l) for l in f if l.strip()]


def test_log_event_creates_file() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        log_event(tmpdir, "test.event", {"key": "val"})
        path = os.path.join(tmpdir, "audit.jsonl")
        assert os.path.exists(path)
        record = _lines(path)[0]
        assert record["type"] == "test.event"
        assert record["payload"]["key"] == "val"
        assert record["ts"].endswith("Z")


def test_log_event_appends() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        log_event(tmpdir, "a", {})
        log_event(tmpdir, "b", {})
        assert [r["type"] for r in _lines(os.path.join(tmpdir, "audit.jsonl"))] == ["a", "b"]


def test_log_event_is_mirrored_to_log_dir(tmp_path) -> None:
    data_dir = tmp_path / "data"
    log_event(str(data_dir), "dispatch.created", {"task_id": "dsp-1"})
    central = logging_config.get_audit_log_path()
    assert central.startswith(str(tmp_path / "logs"))
    assert _lines(central)[0]["payload"] == {"task_id": "dsp-1"}


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    saved = (root.level, list(root.handlers), list(logging_config.mcp_call_logger.handlers))
    yield
    for handler in root.handlers + logging_config.mcp_call_logger.handlers:
        handler.close()
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    logging_config.mcp_call_logger.handlers[:] = saved[2]


def test_setup_logging_writes_files(tmp_path, restore_logging) -> None:
    log_dir = str(tmp_path / "central")
    logging_config.setup_logging(log_dir, "debug")
    assert logging_config.get_log_dir() == log_dir

    logging.getLogger("orchestrator.test").info("hello log")
    logging_config.log_mcp_call("tools/call", tool_name="dispatch", tool_args={"target": "codex"}, duration_ms=1.23)
    for handler in logging.getLogger().handlers + logging_config.mcp_call_logger.handlers:
        handler.flush()

    with open(os.path.join(log_dir, "orchestrator.log"), encoding="utf-8") as f:
        assert "hello log" in f.read()
    call = _lines(os.path.join(log_dir, "mcp-calls.log"))[0]
    assert call["tool"] == "dispatch"
    assert call["duration_ms"] == 1.2


def test_clear_logs_on_launch(tmp_path, restore_logging) -> None:
    log_dir = tmp_path / "central"
    log_dir.mkdir()
    (log_dir / "old.log").write_text("stale")
    (log_dir / "audit.jsonl").write_text("{}\n")
    (log_dir / "keep.txt").write_text("keep")
    logging_config.setup_logging(str(log_dir), clear_on_launch=True)
    assert not (log_dir / "old.log").exists()
    assert not (log_dir / "audit.jsonl").exists()
    assert (log_dir / "keep.txt").exists()
