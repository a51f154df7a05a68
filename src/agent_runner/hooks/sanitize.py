"""Secret scrubbing for agent shell commands and runner log lines."""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

_MAX_PREVIEW_CHARS = 2_000

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}\b"), r"\1 [redacted-token]"),
    (re.compile(r"(?i)\bsk-[a-z0-9\-_]{8,}\b"), "[redacted-token]"),
    (re.compile(r"(?i)([?&](?:token|key|signature|auth))=[^&\s]+"), r"\1=[redacted]"),
    (
        re.compile(
            r"(?i)\b([a-z0-9_]*(?:api_key|token|secret))\s*[:=]\s*['\"]?[^'\"&\s]+['\"]?",
        ),
        r"\1=[redacted]",
    ),
)

HookCallback = Callable[[dict[str, Any], str | None, Any], Awaitable[dict[str, Any]]]


def sanitize_preview(text: str, *, max_chars: int = _MAX_PREVIEW_CHARS) -> str:
    """Mask credentials in ``text`` and cut it to ``max_chars`` for a log line.

    Chat identifiers such as ``chat@g.us`` are kept; they are routing data,
    not secrets.
    """

    redacted = text.strip()
    for pattern, replacement in _SECRET_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted[:max_chars]


def build_unset_prefix(secret_env_vars: Iterable[str]) -> str:
    """Shell prefix removing secret variables from the command's environment."""

    names: list[str] = []
    for name in secret_env_vars:
        if name and name not in names:
            names.append(name)
    if not names:
        return ""
    return f"unset {' '.join(shlex.quote(name) for name in names)} 2>/dev/null; "


def create_sanitize_bash_hook(secret_env_vars: Iterable[str]) -> HookCallback:
    """PreToolUse hook that unsets secret variables before any Bash command runs."""

    prefix = build_unset_prefix(secret_env_vars)

    async def _sanitize_bash(
        input_data: dict[str, Any],
        tool_use_id: str | None,
        context: Any,
    ) -> dict[str, Any]:
        try:
            tool_input = input_data.get("tool_input")
            if not isinstance(tool_input, dict):
                return {}
            command = tool_input.get("command")
            if not isinstance(command, str) or not command or not prefix:
                return {}
            return {
                "hookSpecificOutput": {
                    "hookEventName": "PreToolUse",
                    "updatedInput": {**tool_input, "command": prefix + command},
                },
            }
        except Exception as error:  # noqa: BLE001 - a hook must never abort the run
            logger.warning("Bash sanitation hook failed: %s", error)
            return {}

    return _sanitize_bash
