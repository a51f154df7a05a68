from __future__ import annotations

import json
import stat
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_runner.main import agent_runner

from conftest import parse_records

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("CLI"),
]


@pytest.fixture()
def runner_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    inbox = tmp_path / "ipc" / "input"
    monkeypatch.setenv("AGENT_RUNNER_IPC_INPUT_DIR", str(inbox))
    monkeypatch.setenv("AGENT_RUNNER_GROUP_DIR", str(tmp_path / "group"))
    monkeypatch.setenv("AGENT_RUNNER_GLOBAL_INSTRUCTIONS_PATH", str(tmp_path / "global" / "CLAUDE.md"))
    monkeypatch.setenv("AGENT_RUNNER_EXTRA_DIRS_BASE", str(tmp_path / "extra"))
    monkeypatch.setenv("AGENT_RUNNER_INPUT_FILE", str(tmp_path / "input.json"))
    monkeypatch.setenv("AGENT_RUNNER_TOOL_BRIDGE_PATH", str(tmp_path / "bridge.js"))
    monkeypatch.setenv("AGENT_RUNNER_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("AGENT_RUNNER_LOG_LEVEL", "WARNING")
    return inbox


def _fake_opencode(tmp_path: Path) -> Path:
    script = tmp_path / "fake-opencode"
    script.write_text(
        '#!/bin/sh\nprintf "reply to %s" "$2"\ntouch "$AGENT_RUNNER_IPC_INPUT_DIR/_close"\n',
        "utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def _input_document(**overrides: object) -> str:
    document: dict[str, object] = {
        "prompt": "hello",
        "groupFolder": "family",
        "chatJid": "chat@g.us",
        "isMain": False,
        "agentType": "opencode",
        "secrets": {"ANTHROPIC_API_KEY": "sk-test"},
    }
    document.update(overrides)
    return json.dumps(document)


def test_send_and_close_write_into_the_inbox(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    runner = CliRunner()

    sent = runner.invoke(agent_runner, ["send", "are you there?", "--inbox-dir", str(inbox)])
    closed = runner.invoke(agent_runner, ["close", "--inbox-dir", str(inbox)])

    assert sent.exit_code == 0
    assert "queued" in sent.output
    messages = [path for path in inbox.iterdir() if path.name != "_close"]
    assert len(messages) == 1
    assert json.loads(messages[0].read_text("utf-8")) == {"type": "message", "text": "are you there?"}
    assert closed.exit_code == 0
    assert (inbox / "_close").exists()


def test_run_rejects_malformed_input(runner_env: Path) -> None:
    result = CliRunner().invoke(agent_runner, ["run"], input="not json")

    assert result.exit_code == 1
    records = parse_records(result.stdout)
    assert len(records) == 1
    assert records[0]["status"] == "error"
    assert records[0]["result"] is None
    assert str(records[0]["error"]).startswith("Failed to parse input: invalid JSON")


def test_run_rejects_input_missing_required_fields(runner_env: Path) -> None:
    result = CliRunner().invoke(agent_runner, ["run"], input=json.dumps({"prompt": "hi"}))

    assert result.exit_code == 1
    records = parse_records(result.stdout)
    assert "groupFolder" in str(records[0]["error"])


def test_run_rejects_invalid_configuration(
    runner_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AGENT_RUNNER_POLL_INTERVAL_SECONDS", "0")

    result = CliRunner().invoke(agent_runner, ["run"], input=_input_document())

    assert result.exit_code == 1
    records = parse_records(result.stdout)
    assert str(records[0]["error"]).startswith("Invalid configuration:")


def test_run_drives_external_backend_until_close(
    runner_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("AGENT_RUNNER_OPENCODE_EXECUTABLE", str(_fake_opencode(tmp_path)))
    input_file = tmp_path / "handoff.json"
    input_file.write_text(_input_document(), "utf-8")

    result = CliRunner().invoke(agent_runner, ["run", "--input-file", str(input_file)])

    assert result.exit_code == 0, result.output
    assert parse_records(result.stdout) == [
        {"status": "success", "result": "reply to hello"},
        {"status": "success", "result": None},
    ]
    assert not input_file.exists()
    assert not (runner_env / "_close").exists()


def test_run_reports_missing_external_backend(
    runner_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("AGENT_RUNNER_OPENCODE_EXECUTABLE", str(tmp_path / "missing-opencode"))

    result = CliRunner().invoke(agent_runner, ["run"], input=_input_document(sessionId="s-9"))

    assert result.exit_code == 1
    records = parse_records(result.stdout)
    assert len(records) == 1
    assert records[0]["status"] == "error"


def test_run_reports_unusable_inbox_once(
    runner_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", "utf-8")
    monkeypatch.setenv("AGENT_RUNNER_IPC_INPUT_DIR", str(blocker / "input"))
    monkeypatch.setenv("AGENT_RUNNER_OPENCODE_EXECUTABLE", str(_fake_opencode(tmp_path)))

    result = CliRunner().invoke(agent_runner, ["run"], input=_input_document())

    assert result.exit_code == 1
    records = parse_records(result.stdout)
    assert len(records) == 1
    assert records[0]["status"] == "error"


def test_run_reports_backend_setup_failure_once(
    runner_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_create_driver(*args, **kwargs):
        raise RuntimeError("no backend available")

    monkeypatch.setattr("agent_runner.main.create_driver", broken_create_driver)

    result = CliRunner().invoke(agent_runner, ["run"], input=_input_document())

    assert result.exit_code == 1
    assert parse_records(result.stdout) == [
        {
            "status": "error",
            "result": None,
            "error": "Failed to start agent backend: no backend available",
        },
    ]
