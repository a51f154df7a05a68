"""Data shapes passed across the host/container boundary."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agent_runner.errors import InitializationError


class AgentType(str, Enum):
    """Closed set of agent backends a container can run."""

    CLAUDE = "claude"
    OPENCODE = "opencode"


DEFAULT_AGENT_TYPE = AgentType.CLAUDE


class SessionContinuity(str, Enum):
    """How trustworthy ``QueryResult.new_session_id`` is."""

    ASSIGNED = "assigned"
    ECHOED = "echoed"
    NONE = "none"


class OutputStatus(str, Enum):
    """Outbound record status."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ContainerInput:
    """One-shot initialization document written by the host."""

    prompt: str
    group_folder: str
    chat_jid: str
    is_main: bool
    session_id: str | None = None
    is_scheduled_task: bool = False
    assistant_name: str | None = None
    agent_type: AgentType = DEFAULT_AGENT_TYPE
    secrets: dict[str, str] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class QueryResult:
    """Outcome of one driver invocation."""

    closed_during_query: bool = False
    new_session_id: str | None = None
    last_assistant_uuid: str | None = None
    session_continuity: SessionContinuity = SessionContinuity.NONE


@dataclass(slots=True)
class OutputRecord:
    """One reportable event on the outbound side-channel."""

    status: OutputStatus
    result: str | None = None
    new_session_id: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase shape the host reads."""

        payload: dict[str, Any] = {"status": self.status.value, "result": self.result}
        if self.new_session_id is not None:
            payload["newSessionId"] = self.new_session_id
        if self.error is not None:
            payload["error"] = self.error
        return payload


def parse_container_input(raw: str) -> ContainerInput:
    """Parse the host's JSON document into a ``ContainerInput``."""

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise InitializationError(f"invalid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise InitializationError("expected a JSON object")

    return ContainerInput(
        prompt=_required_str(payload, "prompt"),
        group_folder=_required_str(payload, "groupFolder"),
        chat_jid=_required_str(payload, "chatJid"),
        is_main=_optional_bool(payload, "isMain", default=False),
        session_id=_optional_str(payload, "sessionId"),
        is_scheduled_task=_optional_bool(payload, "isScheduledTask", default=False),
        assistant_name=_optional_str(payload, "assistantName"),
        agent_type=_parse_agent_type(payload.get("agentType")),
        secrets=_parse_secrets(payload.get("secrets")),
    )


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise InitializationError(f"field {key!r} must be a string")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InitializationError(f"field {key!r} must be a string")
    return value


def _optional_bool(payload: dict[str, Any], key: str, *, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InitializationError(f"field {key!r} must be a boolean")
    return value


def _parse_agent_type(value: object) -> AgentType:
    if value is None or value == "":
        return DEFAULT_AGENT_TYPE
    try:
        return AgentType(str(value).strip().lower())
    except ValueError as error:
        supported = ", ".join(agent.value for agent in AgentType)
        raise InitializationError(
            f"unsupported agentType {value!r}; expected one of: {supported}",
        ) from error


def _parse_secrets(value: object) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InitializationError("field 'secrets' must be an object")
    secrets: dict[str, str] = {}
    for name, secret in value.items():
        if not isinstance(name, str) or not isinstance(secret, str):
            raise InitializationError("field 'secrets' must map strings to strings")
        secrets[name] = secret
    return secrets
