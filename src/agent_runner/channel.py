"""Filesystem-backed live-message channel.

The host drops one file per message into the inbox directory and creates a
``_close`` sentinel when no more messages will arrive. The runner consumes
messages in creation order and deletes each one once read.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path

from agent_runner.errors import ChannelReadError
from agent_runner.hooks.sanitize import sanitize_preview

logger = logging.getLogger(__name__)

CLOSE_SENTINEL_NAME = "_close"
_TMP_SUFFIX = ".tmp"
_JSON_SUFFIX = ".json"


class LiveMessageChannel:
    """Inbox directory plus close sentinel, consumed by a single reader."""

    def __init__(self, inbox_dir: Path, *, poll_interval_seconds: float = 0.5) -> None:
        self.inbox_dir = inbox_dir
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False

    @property
    def sentinel_path(self) -> Path:
        return self.inbox_dir / CLOSE_SENTINEL_NAME

    def clear_stale_sentinel(self) -> None:
        """Create the inbox and drop a sentinel left by a previous container run."""

        self.inbox_dir.mkdir(parents=True, exist_ok=True)
        if self.consume_sentinel():
            logger.info("Removed stale close sentinel from previous run")

    def drain_pending(self) -> list[str]:
        """Read and remove every pending message in delivery order."""

        return self._take(limit=None)

    async def wait_for_next(self) -> str | None:
        """Block until a message arrives (returned) or close is requested (``None``)."""

        while True:
            messages = self._take(limit=1)
            if messages:
                return messages[0]
            if self.is_terminate_requested():
                self.consume_sentinel()
                return None
            await asyncio.sleep(self.poll_interval_seconds)

    def is_terminate_requested(self) -> bool:
        return self._stop_requested or self.sentinel_path.exists()

    def consume_sentinel(self) -> bool:
        """Remove the sentinel so it terminates at most one wait."""

        try:
            self.sentinel_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def request_stop(self) -> None:
        """In-process close request, used by signal handlers."""

        self._stop_requested = True

    def post(self, text: str) -> Path:
        """Write one message atomically (writer side)."""

        self.inbox_dir.mkdir(parents=True, exist_ok=True)
        name = f"{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:8]}{_JSON_SUFFIX}"
        target = self.inbox_dir / name
        staging = self.inbox_dir / f"{name}{_TMP_SUFFIX}"
        staging.write_text(
            json.dumps({"type": "message", "text": text}, ensure_ascii=False),
            "utf-8",
        )
        os.replace(staging, target)
        return target

    def request_close(self) -> None:
        """Create the close sentinel (writer side)."""

        self.inbox_dir.mkdir(parents=True, exist_ok=True)
        self.sentinel_path.touch()

    def _take(self, *, limit: int | None) -> list[str]:
        messages: list[str] = []
        for path in self._pending_files():
            if limit is not None and len(messages) >= limit:
                break
            try:
                text = _read_message(path)
            except ChannelReadError as error:
                logger.warning("Skipping unreadable message %s: %s", path.name, error)
                _discard(path)
                continue
            _discard(path)
            logger.debug("Consumed message %s: %s", path.name, sanitize_preview(text, max_chars=80))
            messages.append(text)
        return messages

    def _pending_files(self) -> list[Path]:
        try:
            entries = list(os.scandir(self.inbox_dir))
        except FileNotFoundError:
            return []
        except OSError as error:
            logger.warning("Cannot list inbox %s: %s", self.inbox_dir, error)
            return []

        keyed: list[tuple[int, str, Path]] = []
        for entry in entries:
            name = entry.name
            if name == CLOSE_SENTINEL_NAME or name.startswith(".") or name.endswith(_TMP_SUFFIX):
                continue
            try:
                if not entry.is_file():
                    continue
                created = entry.stat().st_mtime_ns
            except OSError:
                # Removed between scandir and stat.
                continue
            keyed.append((created, name, Path(entry.path)))
        keyed.sort(key=lambda item: (item[0], item[1]))
        return [path for _, _, path in keyed]


def _read_message(path: Path) -> str:
    try:
        raw = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise ChannelReadError(str(error)) from error
    if path.suffix != _JSON_SUFFIX:
        return raw

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ChannelReadError(f"invalid JSON: {error}") from error
    if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
        raise ChannelReadError("expected an object with a 'text' string")
    if payload.get("type", "message") != "message":
        raise ChannelReadError(f"unsupported message type {payload.get('type')!r}")
    return payload["text"]


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as error:
        logger.warning("Cannot remove message file %s: %s", path.name, error)
