"""Error taxonomy for the runner."""

from __future__ import annotations


class AgentRunnerError(RuntimeError):
    """Base error; ``reported`` means an outbound error record was already written."""

    def __init__(self, message: str, *, reported: bool = False) -> None:
        super().__init__(message)
        self.reported = reported


class InitializationError(AgentRunnerError):
    """Startup document is missing, malformed or has invalid fields."""


class ChannelReadError(AgentRunnerError):
    """A single inbox file could not be read or decoded."""


class BackendSpawnError(AgentRunnerError):
    """External backend executable could not be started."""

    def __init__(self, message: str, *, transient: bool, reported: bool = False) -> None:
        super().__init__(message, reported=reported)
        self.transient = transient


class BackendRuntimeError(AgentRunnerError):
    """Streaming backend raised while a query was in flight."""


class HookFailure(AgentRunnerError):
    """A side-effect hook failed; always recovered inside the hook."""
