"""Agent backend drivers."""

from agent_runner.channel import LiveMessageChannel
from agent_runner.contracts import AgentType
from agent_runner.drivers.base import AgentDriver, DriverContext, merge_secret_env
from agent_runner.drivers.claude import ClaudeDriver
from agent_runner.drivers.feed import MessageFeed
from agent_runner.drivers.opencode import OpenCodeDriver
from agent_runner.output import OutputWriter


def create_driver(
    agent_type: AgentType,
    context: DriverContext,
    *,
    channel: LiveMessageChannel,
    output: OutputWriter,
) -> AgentDriver:
    """Select the backend for ``agent_type``; the set of backends is closed."""

    if agent_type is AgentType.OPENCODE:
        return OpenCodeDriver(context, output=output)
    return ClaudeDriver(context, channel=channel, output=output)


__all__ = [
    "AgentDriver",
    "ClaudeDriver",
    "DriverContext",
    "MessageFeed",
    "OpenCodeDriver",
    "create_driver",
    "merge_secret_env",
]
