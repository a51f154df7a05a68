"""Pre-compaction conversation archival.

Before the SDK compacts a session it calls this hook; the full transcript is
rendered to markdown under the group's ``conversations`` directory so the
history stays readable after the model's context has been trimmed.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from agent_runner.errors import HookFailure
from agent_runner.hooks.sanitize import HookCallback

logger = logging.getLogger(__name__)

_SESSIONS_INDEX_NAME = "sessions-index.json"
_MAX_NAME_CHARS = 50
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


@dataclass(slots=True)
class TranscriptTurn:
    """One user or assistant text turn."""

    role: str
    content: str


def parse_transcript(content: str) -> list[TranscriptTurn]:
    """Extract user/assistant text turns from a JSONL transcript."""

    turns: list[TranscriptTurn] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        if not isinstance(message, dict):
            continue
        kind = entry.get("type")
        if kind == "user":
            text = _user_text(message.get("content"))
        elif kind == "assistant":
            text = _assistant_text(message.get("content"))
        else:
            continue
        if text:
            turns.append(TranscriptTurn(role=kind, content=text))
    return turns


def session_summary(session_id: str | None, transcript_path: Path) -> str | None:
    """Look up the summary the CLI recorded for ``session_id``, if any."""

    index_path = transcript_path.parent / _SESSIONS_INDEX_NAME
    if session_id is None or not index_path.exists():
        return None
    try:
        index = json.loads(index_path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    entries = index.get("entries") if isinstance(index, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if isinstance(entry, dict) and entry.get("sessionId") == session_id:
            summary = entry.get("summary")
            return summary if isinstance(summary, str) and summary else None
    return None


def slugify(summary: str) -> str:
    slug = _SLUG_SEPARATORS.sub("-", summary.lower()).strip("-")
    return slug[:_MAX_NAME_CHARS]


def fallback_name(now: datetime) -> str:
    return f"conversation-{now:%H%M}"


def format_transcript_markdown(
    turns: list[TranscriptTurn],
    *,
    title: str | None,
    assistant_name: str | None,
    max_chars: int,
    now: datetime,
) -> str:
    lines = [f"# {title or 'Conversation'}", "", f"Archived: {now:%Y-%m-%d %H:%M:%S}", "", "---", ""]
    for turn in turns:
        sender = "User" if turn.role == "user" else (assistant_name or "Assistant")
        content = turn.content
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        lines.extend([f"**{sender}**: {content}", ""])
    return "\n".join(lines)


def archive_transcript(  # noqa: PLR0913
    *,
    transcript_path: Path,
    session_id: str | None,
    conversations_dir: Path,
    assistant_name: str | None,
    max_chars: int,
    now: datetime | None = None,
) -> Path | None:
    """Write the transcript as markdown; return the file path or ``None`` if empty."""

    try:
        content = transcript_path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise HookFailure(f"cannot read transcript {transcript_path}: {error}") from error

    turns = parse_transcript(content)
    if not turns:
        return None

    moment = now or datetime.now()  # noqa: DTZ005 - archive names use container local time
    summary = session_summary(session_id, transcript_path)
    name = (slugify(summary) if summary else "") or fallback_name(moment)
    target = conversations_dir / f"{moment:%Y-%m-%d}-{name}.md"
    try:
        conversations_dir.mkdir(parents=True, exist_ok=True)
        target = _free_path(target)
        target.write_text(
            format_transcript_markdown(
                turns,
                title=summary,
                assistant_name=assistant_name,
                max_chars=max_chars,
                now=moment,
            ),
            "utf-8",
        )
    except OSError as error:
        raise HookFailure(f"cannot write archive {target}: {error}") from error
    return target


def create_pre_compact_hook(
    *,
    conversations_dir: Path,
    assistant_name: str | None,
    max_chars: int,
) -> HookCallback:
    """PreCompact hook; failures are logged and never abort the query."""

    async def _pre_compact(
        input_data: dict[str, Any],
        tool_use_id: str | None,
        context: Any,
    ) -> dict[str, Any]:
        raw_path = input_data.get("transcript_path")
        if not raw_path:
            return {}
        transcript_path = Path(raw_path)
        if not transcript_path.exists():
            return {}
        try:
            target = archive_transcript(
                transcript_path=transcript_path,
                session_id=input_data.get("session_id"),
                conversations_dir=conversations_dir,
                assistant_name=assistant_name,
                max_chars=max_chars,
            )
        except Exception as error:  # noqa: BLE001 - a hook must never abort the run
            logger.warning("Failed to archive transcript: %s", error)
            return {}
        if target is not None:
            logger.info("Archived conversation to %s", target)
        return {}

    return _pre_compact


def _user_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") or "" for block in content if isinstance(block, dict)
        )
    return ""


def _assistant_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        block.get("text", "") or ""
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _free_path(target: Path) -> Path:
    """``target``, or the first ``<stem>-N<suffix>`` sibling that does not exist yet."""

    candidate = target
    counter = 2
    while candidate.exists():
        candidate = target.with_name(f"{target.stem}-{counter}{target.suffix}")
        counter += 1
    return candidate
