"""Driver interface shared by all agent backends."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from agent_runner.config import RunnerSettings
from agent_runner.contracts import ContainerInput, QueryResult

CHAT_JID_ENV = "AGENT_RUNNER_CHAT_JID"
GROUP_FOLDER_ENV = "AGENT_RUNNER_GROUP_FOLDER"
IS_MAIN_ENV = "AGENT_RUNNER_IS_MAIN"


@dataclass(slots=True)
class DriverContext:
    """Everything a driver holds across invocations; no session state."""

    container_input: ContainerInput
    env: dict[str, str] = field(repr=False)
    tool_bridge_path: Path
    settings: RunnerSettings

    def identity_env(self) -> dict[str, str]:
        """Fixed variables identifying the workspace to backend tools."""

        return {
            CHAT_JID_ENV: self.container_input.chat_jid,
            GROUP_FOLDER_ENV: self.container_input.group_folder,
            IS_MAIN_ENV: "1" if self.container_input.is_main else "0",
        }

    def secret_env_vars(self) -> tuple[str, ...]:
        """Configured secret variable names plus every injected secret name."""

        names = list(self.settings.backend.secret_env_vars)
        for name in self.container_input.secrets:
            if name not in names:
                names.append(name)
        return tuple(names)


def merge_secret_env(
    secrets: Mapping[str, str],
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Process environment with secrets layered on top; never written to disk."""

    env = dict(os.environ if base_env is None else base_env)
    env.update(secrets)
    return env


class AgentDriver(Protocol):
    """Protocol implemented by agent backends."""

    async def run(
        self,
        prompt: str,
        session_id: str | None,
        resume_at: str | None,
    ) -> QueryResult:
        """Run one query, report results on the output channel, return continuity."""
