from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    log_level: str
    log_dir: str
    storage_dir: str
    sessions_dir: str
    wrapper_path: str
    wrapper_shell: str
    bridge_config_path: str
    skills_dir: str
    mcp_token: str | None
    host: str
    port: int
    clear_logs_on_launch: bool

    @staticmethod
    def from_env() -> "Settings":
        claude_home = Path(os.path.expanduser("~")) / ".claude"
        default_storage = str(claude_home / "orchestrator")
        orchestration = claude_home / "orchestration"
        return Settings(
            log_level=os.getenv("ORCH_LOG_LEVEL", "info"),
            log_dir=os.getenv("ORCH_LOG_DIR") or str(Path(default_storage) / ".logs"),
            storage_dir=os.getenv("ORCH_STORAGE_DIR") or default_storage,
            sessions_dir=os.getenv("ORCH_SESSIONS_DIR") or str(orchestration / "sessions"),
            wrapper_path=os.getenv("ORCH_WRAPPER_PATH") or str(orchestration / "templates" / "dispatch-wrapper.sh"),
            wrapper_shell=os.getenv("ORCH_WRAPPER_SHELL", "bash"),
            bridge_config_path=os.getenv("ORCH_BRIDGE_CONFIG") or str(orchestration / "bridge-config.json"),
            skills_dir=os.getenv("ORCH_SKILLS_DIR") or str(claude_home / "skills"),
            mcp_token=os.getenv("ORCH_MCP_TOKEN"),
            host=os.getenv("ORCH_HOST", "127.0.0.1"),
            port=int(os.getenv("ORCH_PORT", "18791")),
            clear_logs_on_launch=_flag("ORCH_CLEAR_LOGS_ON_LAUNCH"),
        )
