"""CLI entrypoint for agent-runner."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import rich_click as click

from agent_runner import __version__
from agent_runner.channel import LiveMessageChannel
from agent_runner.config import RunnerSettings
from agent_runner.contracts import ContainerInput, parse_container_input
from agent_runner.drivers import DriverContext, create_driver, merge_secret_env
from agent_runner.errors import InitializationError
from agent_runner.output import OutputWriter
from agent_runner.runner import QueryLoop, stop_on_signals

click.rich_click.USE_MARKDOWN = True
logger = logging.getLogger("agent_runner")


@click.group()
@click.version_option(version=__version__, prog_name="agent-runner")
def agent_runner() -> None:
    """Container agent runner CLI."""


@agent_runner.command("run")
@click.option(
    "--input-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Read the init document from this file instead of stdin. Deleted after reading.",
)
def run(input_file: Path | None) -> None:
    """Run the query loop until the close sentinel appears.

    Results are written to stdout as framed JSON records; logs go to stderr.
    """

    output = OutputWriter()
    try:
        settings = RunnerSettings.from_env()
        settings.validate()
    except ValueError as error:
        output.error(f"Invalid configuration: {error}")
        sys.exit(1)
    _configure_logging(settings.log_level)

    try:
        container_input = _read_container_input(settings, input_file)
    except InitializationError as error:
        output.error(f"Failed to parse input: {error}")
        sys.exit(1)
    logger.info(
        "Received input for group: %s (agent: %s)",
        container_input.group_folder,
        container_input.agent_type.value,
    )

    sys.exit(asyncio.run(_run_loop(settings, container_input, output)))


@agent_runner.command("send")
@click.argument("text")
@click.option("--inbox-dir", type=click.Path(path_type=Path), default=None, help="Inbox directory.")
def send(text: str, inbox_dir: Path | None) -> None:
    """Queue one message for the running agent."""

    path = _channel(inbox_dir).post(text)
    click.echo(f"queued {path.name}")


@agent_runner.command("close")
@click.option("--inbox-dir", type=click.Path(path_type=Path), default=None, help="Inbox directory.")
def close(inbox_dir: Path | None) -> None:
    """Ask the running agent to shut down."""

    _channel(inbox_dir).request_close()
    click.echo("close requested")


async def _run_loop(
    settings: RunnerSettings,
    container_input: ContainerInput,
    output: OutputWriter,
) -> int:
    channel = LiveMessageChannel(
        settings.workspace.ipc_input_dir,
        poll_interval_seconds=settings.poll_interval_seconds,
    )
    try:
        context = DriverContext(
            container_input=container_input,
            env=merge_secret_env(container_input.secrets),
            tool_bridge_path=_resolve_tool_bridge(settings.backend.tool_bridge_path),
            settings=settings,
        )
        driver = create_driver(container_input.agent_type, context, channel=channel, output=output)
    except Exception as error:  # noqa: BLE001 - startup failures are reported like loop failures
        logger.error("Failed to start agent backend: %s", error)
        output.error(f"Failed to start agent backend: {error}")
        return 1
    loop = QueryLoop(
        container_input=container_input,
        driver=driver,
        channel=channel,
        output=output,
    )
    with stop_on_signals(channel):
        return await loop.run()


def _read_container_input(settings: RunnerSettings, input_file: Path | None) -> ContainerInput:
    try:
        raw = input_file.read_text("utf-8") if input_file is not None else sys.stdin.read()
    except (OSError, UnicodeDecodeError) as error:
        raise InitializationError(str(error)) from error
    finally:
        # The document carries secrets; it must not outlive this read.
        for path in {settings.workspace.input_file_path, input_file}:
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as error:
                logger.warning("Cannot delete input file %s: %s", path, error)
    return parse_container_input(raw)


def _resolve_tool_bridge(path: Path) -> Path:
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        logger.warning("Tool bridge entry point not found: %s", resolved)
    return resolved


def _channel(inbox_dir: Path | None) -> LiveMessageChannel:
    settings = RunnerSettings.from_env()
    return LiveMessageChannel(inbox_dir or settings.workspace.ipc_input_dir)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        format="[agent-runner] %(levelname)s %(name)s: %(message)s",
    )


if __name__ == "__main__":  # pragma: no cover
    agent_runner()
