"""In-process streaming backend on top of the Claude Agent SDK."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    HookMatcher,
    ResultMessage,
    SystemMessage,
    query,
)

from agent_runner.channel import LiveMessageChannel
from agent_runner.contracts import QueryResult, SessionContinuity
from agent_runner.drivers.base import DriverContext
from agent_runner.drivers.feed import MessageFeed
from agent_runner.errors import BackendRuntimeError
from agent_runner.hooks import create_pre_compact_hook, create_sanitize_bash_hook
from agent_runner.output import OutputWriter

logger = logging.getLogger(__name__)

QueryFn = Callable[..., AsyncIterator[Any]]


@dataclass(slots=True)
class _QueryState:
    session_id: str | None = None
    last_assistant_uuid: str | None = None
    closed_during_query: bool = False
    message_count: int = 0
    result_count: int = 0
    uuid_missing_reported: bool = False


class ClaudeDriver:
    """Streams prompts into one SDK query while piping live inbox messages in."""

    def __init__(
        self,
        context: DriverContext,
        *,
        channel: LiveMessageChannel,
        output: OutputWriter,
        query_fn: QueryFn | None = None,
    ) -> None:
        self.context = context
        self.channel = channel
        self.output = output
        self._query_fn = query_fn or query

    async def run(
        self,
        prompt: str,
        session_id: str | None,
        resume_at: str | None,
    ) -> QueryResult:
        try:
            options = self.build_options(session_id=session_id, resume_at=resume_at)
        except OSError as error:
            raise BackendRuntimeError(f"Agent query setup failed: {error}") from error

        feed = MessageFeed()
        feed.push(prompt)
        state = _QueryState()
        # Started only once nothing but the query itself can fail.
        poller = asyncio.create_task(self._poll_channel(feed, state))
        try:
            async for message in self._query_fn(prompt=feed, options=options):
                self._handle_message(message, state)
        except Exception as error:
            raise BackendRuntimeError(f"Agent query failed: {error}") from error
        finally:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller

        logger.info(
            "Query done. Messages: %d, results: %d, lastAssistantUuid: %s, closedDuringQuery: %s",
            state.message_count,
            state.result_count,
            state.last_assistant_uuid or "none",
            state.closed_during_query,
        )
        return QueryResult(
            closed_during_query=state.closed_during_query,
            new_session_id=state.session_id,
            last_assistant_uuid=state.last_assistant_uuid,
            session_continuity=(
                SessionContinuity.ASSIGNED if state.session_id else SessionContinuity.NONE
            ),
        )

    def build_options(self, *, session_id: str | None, resume_at: str | None) -> ClaudeAgentOptions:
        """SDK options for one query; session fields come from the caller."""

        settings = self.context.settings
        container_input = self.context.container_input
        bridge_name = settings.backend.tool_bridge_name

        system_prompt: dict[str, str] = {"type": "preset", "preset": "claude_code"}
        global_instructions = self._global_instructions()
        if global_instructions:
            system_prompt["append"] = global_instructions

        extra_args: dict[str, str | None] = {}
        if resume_at:
            extra_args["resume-session-at"] = resume_at

        return ClaudeAgentOptions(
            cwd=str(settings.workspace.group_dir),
            add_dirs=self._extra_dirs(),
            resume=session_id,
            extra_args=extra_args,
            system_prompt=system_prompt,
            allowed_tools=[*settings.backend.allowed_tools, f"mcp__{bridge_name}__*"],
            env=dict(self.context.env),
            permission_mode="bypassPermissions",
            setting_sources=["project", "user"],
            mcp_servers={
                bridge_name: {
                    "type": "stdio",
                    "command": settings.backend.tool_bridge_command,
                    "args": [str(self.context.tool_bridge_path)],
                    "env": self.context.identity_env(),
                },
            },
            hooks={
                "PreCompact": [
                    HookMatcher(
                        hooks=[
                            create_pre_compact_hook(
                                conversations_dir=settings.workspace.conversations_dir,
                                assistant_name=container_input.assistant_name,
                                max_chars=settings.archive_max_chars,
                            ),
                        ],
                    ),
                ],
                "PreToolUse": [
                    HookMatcher(
                        matcher="Bash",
                        hooks=[create_sanitize_bash_hook(self.context.secret_env_vars())],
                    ),
                ],
            },
        )

    def _handle_message(self, message: Any, state: _QueryState) -> None:
        state.message_count += 1
        if isinstance(message, SystemMessage):
            logger.debug("[msg #%d] type=system/%s", state.message_count, message.subtype)
            if message.subtype == "init":
                new_session_id = message.data.get("session_id")
                if isinstance(new_session_id, str) and new_session_id:
                    state.session_id = new_session_id
                    logger.info("Session initialized: %s", new_session_id)
            return

        if isinstance(message, AssistantMessage):
            logger.debug("[msg #%d] type=assistant", state.message_count)
            uuid = getattr(message, "uuid", None)
            if uuid:
                state.last_assistant_uuid = uuid
            elif not state.uuid_missing_reported:
                state.uuid_missing_reported = True
                logger.warning(
                    "Assistant message carries no uuid; the next query resumes the whole session",
                )
            return

        if isinstance(message, ResultMessage):
            state.result_count += 1
            if state.session_id is None and message.session_id:
                state.session_id = message.session_id
            logger.info(
                "[msg #%d] type=result subtype=%s turns=%d",
                state.message_count,
                message.subtype,
                message.num_turns,
            )
            self.output.success(message.result or None, new_session_id=state.session_id)
            return

        logger.debug("[msg #%d] type=%s", state.message_count, type(message).__name__)

    async def _poll_channel(self, feed: MessageFeed, state: _QueryState) -> None:
        interval = self.channel.poll_interval_seconds
        while not feed.closed:
            await asyncio.sleep(interval)
            for text in self.channel.drain_pending():
                logger.info("Piping message into active query (%d chars)", len(text))
                feed.push(text)
            if self.channel.is_terminate_requested():
                logger.info("Close sentinel detected during query, ending stream")
                self.channel.consume_sentinel()
                state.closed_during_query = True
                feed.end()
                return

    def _global_instructions(self) -> str | None:
        if self.context.container_input.is_main:
            return None
        path = self.context.settings.workspace.global_instructions_path
        try:
            return path.read_text("utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as error:
            logger.warning("Cannot read global instructions %s: %s", path, error)
            return None

    def _extra_dirs(self) -> list[str]:
        base = self.context.settings.workspace.extra_dirs_base
        if not base.is_dir():
            return []
        return sorted(str(entry) for entry in base.iterdir() if entry.is_dir())
