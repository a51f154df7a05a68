"""Shared test fixtures."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from agent_runner.channel import LiveMessageChannel
from agent_runner.config import BackendSettings, RunnerSettings, WorkspaceSettings
from agent_runner.contracts import ContainerInput
from agent_runner.drivers import DriverContext
from agent_runner.output import OUTPUT_END_MARKER, OUTPUT_START_MARKER, OutputWriter

FAST_POLL_SECONDS = 0.01


def parse_records(text: str) -> list[dict[str, object]]:
    """Extract framed output records the way the host does."""

    records: list[dict[str, object]] = []
    remaining = text
    while True:
        start = remaining.find(OUTPUT_START_MARKER)
        if start == -1:
            return records
        end = remaining.find(OUTPUT_END_MARKER, start)
        payload = remaining[start + len(OUTPUT_START_MARKER) : end].strip()
        records.append(json.loads(payload))
        remaining = remaining[end + len(OUTPUT_END_MARKER) :]


class CapturedOutput:
    """OutputWriter bound to an in-memory stream."""

    def __init__(self) -> None:
        self.stream = io.StringIO()
        self.writer = OutputWriter(self.stream)

    @property
    def records(self) -> list[dict[str, object]]:
        return parse_records(self.stream.getvalue())


@pytest.fixture()
def captured_output() -> CapturedOutput:
    return CapturedOutput()


@pytest.fixture()
def settings(tmp_path: Path) -> RunnerSettings:
    return RunnerSettings(
        workspace=WorkspaceSettings(
            ipc_input_dir=tmp_path / "ipc" / "input",
            group_dir=tmp_path / "group",
            global_instructions_path=tmp_path / "global" / "CLAUDE.md",
            extra_dirs_base=tmp_path / "extra",
            input_file_path=tmp_path / "input.json",
        ),
        backend=BackendSettings(tool_bridge_path=tmp_path / "bridge.js"),
        poll_interval_seconds=FAST_POLL_SECONDS,
    )


@pytest.fixture()
def channel(settings: RunnerSettings) -> LiveMessageChannel:
    return LiveMessageChannel(
        settings.workspace.ipc_input_dir,
        poll_interval_seconds=settings.poll_interval_seconds,
    )


@pytest.fixture()
def container_input() -> ContainerInput:
    return ContainerInput(
        prompt="hello",
        group_folder="family",
        chat_jid="chat@g.us",
        is_main=False,
        secrets={"ANTHROPIC_API_KEY": "sk-test-secret", "GITHUB_TOKEN": "ghp-test"},
    )


@pytest.fixture()
def driver_context(container_input: ContainerInput, settings: RunnerSettings) -> DriverContext:
    return DriverContext(
        container_input=container_input,
        env={"PATH": "/usr/bin:/bin", **container_input.secrets},
        tool_bridge_path=settings.backend.tool_bridge_path,
        settings=settings,
    )
