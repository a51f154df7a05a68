"""Subprocess-based backend running one ``opencode run`` per query."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from agent_runner.contracts import QueryResult, SessionContinuity
from agent_runner.drivers.base import DriverContext
from agent_runner.errors import BackendSpawnError
from agent_runner.hooks.sanitize import sanitize_preview
from agent_runner.output import OutputWriter

logger = logging.getLogger(__name__)

SpawnFn = Callable[..., Awaitable[Any]]

_READ_CHUNK_BYTES = 65_536


class OpenCodeDriver:
    """Batch backend: one prompt in, one terminal result out.

    The live inbox is not consulted while the process runs, and the CLI
    does not report the session it assigned, so the incoming session id is
    echoed back as ``SessionContinuity.ECHOED``.
    """

    def __init__(
        self,
        context: DriverContext,
        *,
        output: OutputWriter,
        spawn: SpawnFn | None = None,
    ) -> None:
        self.context = context
        self.output = output
        self._spawn = spawn or asyncio.create_subprocess_exec

    def build_args(self, prompt: str, session_id: str | None) -> list[str]:
        backend = self.context.settings.backend
        args = [backend.opencode_executable, "run", prompt]
        if session_id:
            args.extend(["--session", session_id])
        args.extend(["--mcp", f"{backend.tool_bridge_command} {self.context.tool_bridge_path}"])
        return args

    def build_env(self) -> dict[str, str]:
        env = dict(self.context.env)
        env.update(self.context.identity_env())
        return env

    async def run(
        self,
        prompt: str,
        session_id: str | None,
        resume_at: str | None,
    ) -> QueryResult:
        if resume_at:
            logger.debug("OpenCode cannot resume at %s; resuming whole session", resume_at)
        logger.info("Starting OpenCode run (session: %s)...", session_id or "new")
        args = self.build_args(prompt, session_id)

        try:
            process = await self._spawn(
                *args,
                env=self.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise self._report_spawn_failure(error, transient=False) from error
        except OSError as error:
            raise self._report_spawn_failure(error, transient=True) from error

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        await asyncio.gather(
            _pump(process.stdout, stdout_chunks, mirror=False),
            _pump(process.stderr, stderr_chunks, mirror=True),
        )
        exit_code = await process.wait()
        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        logger.info("OpenCode exited with code %s", exit_code)

        if exit_code == 0:
            self.output.success(stdout or None, new_session_id=session_id)
        else:
            self.output.error(stderr, new_session_id=session_id)

        if session_id:
            logger.warning(
                "OpenCode does not report assigned sessions; echoing %s back",
                session_id,
            )
        return QueryResult(
            closed_during_query=False,
            new_session_id=session_id,
            session_continuity=(
                SessionContinuity.ECHOED if session_id else SessionContinuity.NONE
            ),
        )

    def _report_spawn_failure(self, error: OSError, *, transient: bool) -> BackendSpawnError:
        message = str(error)
        logger.error("Failed to spawn OpenCode: %s", sanitize_preview(message))
        self.output.error(message)
        return BackendSpawnError(message, transient=transient, reported=True)


async def _pump(stream: asyncio.StreamReader | None, chunks: list[bytes], *, mirror: bool) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        chunks.append(chunk)
        if mirror:
            text = chunk.decode("utf-8", errors="replace")
            logger.info("[opencode] %s", sanitize_preview(text, max_chars=500))
