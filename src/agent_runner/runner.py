"""Query loop tying driver invocations together across one container run."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from agent_runner.channel import LiveMessageChannel
from agent_runner.contracts import ContainerInput, QueryResult, SessionContinuity
from agent_runner.drivers import AgentDriver
from agent_runner.errors import AgentRunnerError
from agent_runner.hooks.sanitize import sanitize_preview
from agent_runner.output import OutputWriter

logger = logging.getLogger(__name__)

SCHEDULED_TASK_NOTICE = (
    "[SCHEDULED TASK - The following message was sent automatically "
    "and is not coming directly from the user or group.]"
)


class LoopState(str, Enum):
    """Query loop lifecycle states."""

    START = "start"
    RUNNING = "running"
    AWAITING_NEXT = "awaiting_next"
    TERMINATED = "terminated"


def build_first_prompt(container_input: ContainerInput, pending: list[str]) -> str:
    """Initial prompt followed by messages queued before the loop started."""

    prompt = container_input.prompt
    if container_input.is_scheduled_task:
        prompt = f"{SCHEDULED_TASK_NOTICE}\n\n{prompt}"
    if pending:
        prompt += "\n" + "\n".join(pending)
    return prompt


class QueryLoop:
    """Runs the driver, waits for the next message, repeats until closed.

    The loop owns session continuity: ``session_id`` and ``resume_at`` are
    passed into every driver call and updated from every ``QueryResult``.
    """

    def __init__(
        self,
        *,
        container_input: ContainerInput,
        driver: AgentDriver,
        channel: LiveMessageChannel,
        output: OutputWriter,
    ) -> None:
        self.container_input = container_input
        self.driver = driver
        self.channel = channel
        self.output = output
        self.state = LoopState.START
        self.session_id = container_input.session_id
        self.resume_at: str | None = None
        self.invocations = 0

    async def run(self) -> int:
        """Run until the close sentinel; return the process exit code."""

        try:
            self.channel.clear_stale_sentinel()
            pending = self.channel.drain_pending()
            if pending:
                logger.info("Draining %d pending messages into initial prompt", len(pending))
            prompt = build_first_prompt(self.container_input, pending)

            while True:
                self.state = LoopState.RUNNING
                logger.info(
                    "Starting query (agent: %s, session: %s)...",
                    self.container_input.agent_type.value,
                    self.session_id or "new",
                )
                self.invocations += 1
                result = await self.driver.run(prompt, self.session_id, self.resume_at)
                self._apply_result(result)

                if result.closed_during_query:
                    logger.info("Close sentinel consumed during query, exiting")
                    break

                self.output.success(None, new_session_id=self.session_id)
                self.state = LoopState.AWAITING_NEXT
                logger.info("Query ended, waiting for next message...")

                next_message = await self.channel.wait_for_next()
                if next_message is None:
                    logger.info("Close sentinel received, exiting")
                    break

                logger.info("Got new message (%d chars), starting new query", len(next_message))
                prompt = next_message
        except Exception as error:  # noqa: BLE001 - every fatal error is reported once
            self.state = LoopState.TERMINATED
            self._report_fatal(error)
            return 1

        self.state = LoopState.TERMINATED
        return 0

    def _apply_result(self, result: QueryResult) -> None:
        if result.new_session_id:
            if result.session_continuity is SessionContinuity.ECHOED:
                logger.debug("Backend echoed session %s", result.new_session_id)
            self.session_id = result.new_session_id
        if result.last_assistant_uuid:
            self.resume_at = result.last_assistant_uuid

    def _report_fatal(self, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error("Agent error: %s", sanitize_preview(message))
        if isinstance(error, AgentRunnerError) and error.reported:
            return
        self.output.error(message, new_session_id=self.session_id)


@contextmanager
def stop_on_signals(channel: LiveMessageChannel) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a close request on ``channel``."""

    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, closing after the current query", name)
        channel.request_stop()

    installed = False
    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in main thread.
        pass
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
