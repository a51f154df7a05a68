"""Runtime configuration for the container agent runner."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SECRET_ENV_VARS = ("ANTHROPIC_API_KEY", "CLAUDE_CODE_OAUTH_TOKEN")

DEFAULT_ALLOWED_TOOLS = (
    "Bash",
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "WebSearch",
    "WebFetch",
    "Task",
    "TaskOutput",
    "TaskStop",
    "TeamCreate",
    "TeamDelete",
    "SendMessage",
    "TodoWrite",
    "ToolSearch",
    "Skill",
    "NotebookEdit",
)


@dataclass(slots=True)
class WorkspaceSettings:
    """Mounted paths inside the container."""

    ipc_input_dir: Path = Path("/workspace/ipc/input")
    group_dir: Path = Path("/workspace/group")
    global_instructions_path: Path = Path("/workspace/global/CLAUDE.md")
    extra_dirs_base: Path = Path("/workspace/extra")
    input_file_path: Path = Path("/tmp/input.json")  # noqa: S108

    @property
    def close_sentinel_path(self) -> Path:
        return self.ipc_input_dir / "_close"

    @property
    def conversations_dir(self) -> Path:
        return self.group_dir / "conversations"


@dataclass(slots=True)
class BackendSettings:
    """Agent backend settings shared by both driver variants."""

    tool_bridge_path: Path = Path("/app/tool-bridge/ipc-mcp-stdio.js")
    tool_bridge_command: str = "node"
    tool_bridge_name: str = "agent_runner"
    opencode_executable: str = "opencode"
    allowed_tools: tuple[str, ...] = DEFAULT_ALLOWED_TOOLS
    secret_env_vars: tuple[str, ...] = DEFAULT_SECRET_ENV_VARS


@dataclass(slots=True)
class RunnerSettings:
    """Application settings grouped by concern."""

    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    poll_interval_seconds: float = 0.5
    archive_max_chars: int = 2_000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> RunnerSettings:
        """Load settings from ``AGENT_RUNNER_*`` environment variables."""

        defaults_ws = WorkspaceSettings()
        defaults_backend = BackendSettings()
        return cls(
            workspace=WorkspaceSettings(
                ipc_input_dir=_env_path("AGENT_RUNNER_IPC_INPUT_DIR", defaults_ws.ipc_input_dir),
                group_dir=_env_path("AGENT_RUNNER_GROUP_DIR", defaults_ws.group_dir),
                global_instructions_path=_env_path(
                    "AGENT_RUNNER_GLOBAL_INSTRUCTIONS_PATH",
                    defaults_ws.global_instructions_path,
                ),
                extra_dirs_base=_env_path(
                    "AGENT_RUNNER_EXTRA_DIRS_BASE",
                    defaults_ws.extra_dirs_base,
                ),
                input_file_path=_env_path("AGENT_RUNNER_INPUT_FILE", defaults_ws.input_file_path),
            ),
            backend=BackendSettings(
                tool_bridge_path=_env_path(
                    "AGENT_RUNNER_TOOL_BRIDGE_PATH",
                    defaults_backend.tool_bridge_path,
                ),
                tool_bridge_command=os.getenv(
                    "AGENT_RUNNER_TOOL_BRIDGE_COMMAND",
                    defaults_backend.tool_bridge_command,
                ),
                tool_bridge_name=os.getenv(
                    "AGENT_RUNNER_TOOL_BRIDGE_NAME",
                    defaults_backend.tool_bridge_name,
                ),
                opencode_executable=os.getenv(
                    "AGENT_RUNNER_OPENCODE_EXECUTABLE",
                    defaults_backend.opencode_executable,
                ),
                allowed_tools=_env_list(
                    "AGENT_RUNNER_ALLOWED_TOOLS",
                    defaults_backend.allowed_tools,
                ),
                secret_env_vars=_env_list(
                    "AGENT_RUNNER_SECRET_ENV_VARS",
                    defaults_backend.secret_env_vars,
                ),
            ),
            poll_interval_seconds=float(os.getenv("AGENT_RUNNER_POLL_INTERVAL_SECONDS", "0.5")),
            archive_max_chars=int(os.getenv("AGENT_RUNNER_ARCHIVE_MAX_CHARS", "2000")),
            log_level=os.getenv("AGENT_RUNNER_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    def validate(self) -> None:
        """Raise configuration error for values the runner cannot work with."""

        if self.poll_interval_seconds <= 0:
            raise ValueError("AGENT_RUNNER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.archive_max_chars <= 0:
            raise ValueError("AGENT_RUNNER_ARCHIVE_MAX_CHARS must be > 0.")
        if not self.backend.opencode_executable.strip():
            raise ValueError("AGENT_RUNNER_OPENCODE_EXECUTABLE must not be empty.")


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value) if value else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        normalized = part.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        values.append(normalized)
    return tuple(values)
