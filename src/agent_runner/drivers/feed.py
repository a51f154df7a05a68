"""Push-based prompt feed for the streaming backend."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

_END = object()


def user_message(text: str) -> dict[str, Any]:
    """SDK streaming-input envelope for one user turn."""

    return {
        "type": "user",
        "message": {"role": "user", "content": text},
        "parent_tool_use_id": None,
        "session_id": "",
    }


class MessageFeed:
    """Single-producer/single-consumer queue of user turns with a closed state.

    The poller pushes, the SDK iterates. ``end()`` lets the consumer drain
    what is already queued and then stops iteration; pushes after that are
    rejected.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, text: str) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(user_message(text))
        return True

    def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item  # type: ignore[misc]
