from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import allure

from agent_runner.channel import LiveMessageChannel

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("Live Message Channel"),
]


def _write(inbox: Path, name: str, content: str, *, mtime_ns: int | None = None) -> Path:
    inbox.mkdir(parents=True, exist_ok=True)
    path = inbox / name
    path.write_text(content, "utf-8")
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def test_drain_pending_on_missing_directory_returns_empty(tmp_path: Path) -> None:
    channel = LiveMessageChannel(tmp_path / "does-not-exist")

    assert channel.drain_pending() == []


def test_drain_pending_returns_messages_in_creation_order_and_removes_them(
    channel: LiveMessageChannel,
) -> None:
    inbox = channel.inbox_dir
    _write(inbox, "b.txt", "second", mtime_ns=2_000_000_000)
    _write(inbox, "a.txt", "third", mtime_ns=3_000_000_000)
    _write(inbox, "c.json", json.dumps({"type": "message", "text": "first"}), mtime_ns=1_000_000_000)

    assert channel.drain_pending() == ["first", "second", "third"]
    assert list(inbox.iterdir()) == []
    assert channel.drain_pending() == []


def test_drain_pending_ignores_in_flight_writes_and_sentinel(channel: LiveMessageChannel) -> None:
    inbox = channel.inbox_dir
    _write(inbox, "1.json.tmp", "partial")
    _write(inbox, ".hidden", "partial")
    channel.request_close()

    assert channel.drain_pending() == []
    assert channel.is_terminate_requested()
    assert (inbox / "1.json.tmp").exists()


def test_corrupt_message_is_skipped_without_stalling_the_inbox(
    channel: LiveMessageChannel,
) -> None:
    inbox = channel.inbox_dir
    _write(inbox, "1.json", "{not json", mtime_ns=1_000_000_000)
    _write(inbox, "2.json", json.dumps({"type": "message"}), mtime_ns=2_000_000_000)
    _write(inbox, "3.json", json.dumps({"type": "message", "text": "ok"}), mtime_ns=3_000_000_000)

    assert channel.drain_pending() == ["ok"]
    assert list(inbox.iterdir()) == []


def test_post_writes_an_envelope_the_reader_consumes(channel: LiveMessageChannel) -> None:
    path = channel.post("hi there")

    assert path.suffix == ".json"
    assert json.loads(path.read_text("utf-8")) == {"type": "message", "text": "hi there"}
    assert channel.drain_pending() == ["hi there"]


def test_wait_for_next_returns_earliest_and_leaves_the_rest(channel: LiveMessageChannel) -> None:
    inbox = channel.inbox_dir
    _write(inbox, "later.txt", "later", mtime_ns=2_000_000_000)
    _write(inbox, "earlier.txt", "earlier", mtime_ns=1_000_000_000)

    assert asyncio.run(channel.wait_for_next()) == "earlier"
    assert not (inbox / "earlier.txt").exists()
    assert channel.drain_pending() == ["later"]


def test_wait_for_next_blocks_until_a_message_arrives(channel: LiveMessageChannel) -> None:
    async def scenario() -> str | None:
        waiter = asyncio.create_task(channel.wait_for_next())
        await asyncio.sleep(0.05)
        assert not waiter.done()
        channel.post("wake up")
        return await asyncio.wait_for(waiter, timeout=2)

    assert asyncio.run(scenario()) == "wake up"


def test_wait_for_next_prefers_messages_over_the_sentinel(channel: LiveMessageChannel) -> None:
    channel.post("last words")
    channel.request_close()

    assert asyncio.run(channel.wait_for_next()) == "last words"
    assert asyncio.run(channel.wait_for_next()) is None


def test_sentinel_terminates_only_one_wait(channel: LiveMessageChannel) -> None:
    channel.request_close()

    assert asyncio.run(channel.wait_for_next()) is None
    assert not channel.sentinel_path.exists()
    assert not channel.is_terminate_requested()


def test_clear_stale_sentinel_creates_inbox_and_removes_marker(
    channel: LiveMessageChannel,
) -> None:
    channel.request_close()

    channel.clear_stale_sentinel()

    assert channel.inbox_dir.is_dir()
    assert not channel.is_terminate_requested()


def test_request_stop_reports_terminate_without_a_sentinel_file(
    channel: LiveMessageChannel,
) -> None:
    channel.request_stop()

    assert channel.is_terminate_requested()
    assert asyncio.run(channel.wait_for_next()) is None
