"""
Main CLI interface for qingcycle.

This module provides a command-line interface for creating, inspecting,
updating and deleting QingCloud resources through the lifecycle
orchestrator.
"""

import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..clients import QingCloudClient, RemoteCallError, RemoteClient
from ..config.settings import AppSettings, MonitoringSettings, get_settings
from ..drivers import DRIVERS, get_driver
from ..lifecycle import (
    Deadline,
    LifecycleError,
    LifecycleOrchestrator,
    PartialUpdateFailure,
    build_orchestrator,
)
from ..logging_utils import LogManager, ProgressTracker
from ..models import AttributeSet, ResourceHandle


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logging with correlation IDs."""

    RESERVED = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "stack_info",
        "exc_info",
        "exc_text",
        "message",
        "correlation_id",
    }

    def format(self, record):
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "unknown"),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add any extra fields from the record
        for key, value in record.__dict__.items():
            if key not in self.RESERVED and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(monitoring: MonitoringSettings, verbose: bool = False) -> None:
    """Install console and optional file handlers on the root logger."""
    console_handler = logging.StreamHandler()
    if monitoring.log_format == "json":
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else monitoring.log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if monitoring.log_file:
        log_path = Path(monitoring.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)


def create_client(settings: AppSettings) -> RemoteClient:
    """Build the remote client used by CLI commands."""
    return QingCloudClient.from_settings(settings.qingcloud)


async def load_attributes(kind: str, path: str) -> AttributeSet:
    """Read a JSON attribute file for ``kind``."""
    async with aiofiles.open(path, "r") as f:
        content = await f.read()
    return get_driver(kind).attributes_model.model_validate(json.loads(content))


class LifecycleRunner:
    """Runs one lifecycle command with logging and progress display wired in."""

    def __init__(
        self,
        kind: str,
        settings: Optional[AppSettings] = None,
        timeout: Optional[float] = None,
        show_progress: bool = True,
        console: Optional[Console] = None,
    ):
        self.kind = kind
        self.settings = settings or get_settings()
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self.correlation_id = str(uuid.uuid4())

        self.log_manager = LogManager(self.settings.monitoring.event_log)
        self.progress_tracker: Optional[ProgressTracker] = None
        if show_progress:
            self.progress_tracker = ProgressTracker(self.log_manager, console=console)

    def _orchestrator(self, client: RemoteClient) -> LifecycleOrchestrator:
        return build_orchestrator(
            self.kind,
            client,
            settings=self.settings,
            log_manager=self.log_manager,
            correlation_id=self.correlation_id,
        )

    def _start(self, title: str) -> None:
        if self.progress_tracker:
            self.progress_tracker.start(title)

    def _stop(self) -> None:
        if self.progress_tracker:
            self.progress_tracker.stop()

    async def show(self, resource_id: str) -> Optional[AttributeSet]:
        async with create_client(self.settings) as client:
            orchestrator = self._orchestrator(client)
            handle = ResourceHandle(self.kind, resource_id)
            return await orchestrator.read(handle, deadline=Deadline(self.timeout))

    async def apply(
        self,
        desired: AttributeSet,
        resource_id: Optional[str] = None,
        current: Optional[AttributeSet] = None,
    ) -> Dict[str, Any]:
        deadline = Deadline(self.timeout)
        async with create_client(self.settings) as client:
            orchestrator = self._orchestrator(client)
            self._start(f"Applying {self.kind}...")
            try:
                if resource_id is None:
                    handle = await orchestrator.create(desired, deadline=deadline)
                    attributes = await orchestrator.read(handle, deadline=deadline)
                    return {"handle": handle, "created": True, "attributes": attributes}

                handle = ResourceHandle(self.kind, resource_id)
                if current is None:
                    current = await orchestrator.read(handle, deadline=deadline)
                    if current is None:
                        raise LifecycleError(
                            "resource no longer exists", handle=f"{self.kind}:{resource_id}"
                        )
                attributes = await orchestrator.update(
                    handle, desired, current, deadline=deadline
                )
                return {
                    "handle": handle,
                    "created": False,
                    "changed": attributes is not None,
                    "attributes": attributes or current,
                }
            finally:
                self._stop()

    async def delete(self, resource_id: str) -> None:
        async with create_client(self.settings) as client:
            orchestrator = self._orchestrator(client)
            self._start(f"Deleting {self.kind}:{resource_id}...")
            try:
                await orchestrator.delete(
                    ResourceHandle(self.kind, resource_id),
                    deadline=Deadline(self.timeout),
                )
            finally:
                self._stop()


def render_attributes(attributes: AttributeSet, title: str) -> None:
    """Print ``attributes`` as a two-column table."""
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for name, value in attributes.model_dump().items():
        if isinstance(value, (set, frozenset)):
            value = ", ".join(sorted(value))
        table.add_row(name, "" if value is None else str(value))
    Console().print(table)


def report_failure(error: Exception) -> None:
    """Print a lifecycle failure and exit with status 1."""
    click.echo(f"❌ Error: {error}")
    if isinstance(error, PartialUpdateFailure):
        click.echo(f"   Failed step: {error.failed_step}")
        click.echo(f"   Applied steps: {', '.join(error.applied_steps) or 'none'}")
    sys.exit(1)


KIND = click.Choice(sorted(DRIVERS))


# CLI Commands


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--timeout", "-t", type=float, default=None, help="Overall deadline in seconds"
)
@click.option("--quiet", "-q", is_flag=True, help="Hide the progress display")
@click.pass_context
def cli(ctx, verbose, timeout, quiet):
    """qingcycle - QingCloud resource lifecycle orchestrator"""
    settings = get_settings()
    configure_logging(settings.monitoring, verbose)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["timeout"] = timeout
    ctx.obj["progress"] = not quiet


@cli.command()
@click.argument("kind", type=KIND)
@click.argument("resource_id")
@click.pass_context
def show(ctx, kind, resource_id):
    """Show the live attributes of a resource.

    Examples:
      qingcycle show instance i-abcd1234
    """

    async def _show():
        runner = LifecycleRunner(kind, ctx.obj["settings"], ctx.obj["timeout"], False)
        try:
            attributes = await runner.show(resource_id)
        except (LifecycleError, RemoteCallError) as e:
            report_failure(e)

        if attributes is None:
            click.echo(f"📭 {kind}:{resource_id} does not exist")
            sys.exit(1)
        render_attributes(attributes, f"{kind}:{resource_id}")

    asyncio.run(_show())


@cli.command()
@click.argument("kind", type=KIND)
@click.argument("desired", type=click.Path(exists=True, dir_okay=False))
@click.option("--id", "resource_id", help="Update this resource instead of creating one")
@click.option(
    "--current",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with the last known attributes (default: read them live)",
)
@click.pass_context
def apply(ctx, kind, desired, resource_id, current):
    """Create a resource, or update it when --id is given.

    Examples:
      qingcycle apply instance web.json
      qingcycle apply instance web.json --id i-abcd1234
      qingcycle apply cache redis.json --id c-abcd1234 --current last.json
    """

    async def _apply():
        try:
            desired_attrs = await load_attributes(kind, desired)
            current_attrs = await load_attributes(kind, current) if current else None
        except (ValidationError, ValueError) as e:
            click.echo(f"❌ Invalid attribute file: {e}")
            sys.exit(1)

        runner = LifecycleRunner(
            kind, ctx.obj["settings"], ctx.obj["timeout"], ctx.obj["progress"]
        )
        try:
            result = await runner.apply(desired_attrs, resource_id, current_attrs)
        except (LifecycleError, RemoteCallError) as e:
            report_failure(e)

        handle = result["handle"]
        if result["created"]:
            click.echo(f"🎉 Created {handle}")
        elif result["changed"]:
            click.echo(f"✅ Updated {handle}")
        else:
            click.echo(f"✅ {handle} is up to date")
        if result["attributes"] is not None:
            render_attributes(result["attributes"], str(handle))

    asyncio.run(_apply())


@cli.command()
@click.argument("kind", type=KIND)
@click.argument("resource_id")
@click.pass_context
def delete(ctx, kind, resource_id):
    """Delete a resource; deleting a missing resource succeeds."""

    async def _delete():
        runner = LifecycleRunner(
            kind, ctx.obj["settings"], ctx.obj["timeout"], ctx.obj["progress"]
        )
        try:
            await runner.delete(resource_id)
        except (LifecycleError, RemoteCallError) as e:
            report_failure(e)
        click.echo(f"🗑️  Deleted {kind}:{resource_id}")

    asyncio.run(_delete())


@cli.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration with secrets masked."""
    click.echo(json.dumps(ctx.obj["settings"].get_safe_dict(), indent=2, default=str))


@cli.command()
@click.option("--lines", "-n", default=50, help="Number of log lines to show")
@click.pass_context
def logs(ctx, lines):
    """Show recent lifecycle events from the event log."""

    async def _logs():
        event_log = ctx.obj["settings"].monitoring.event_log
        if not event_log or not Path(event_log).exists():
            click.echo("📄 No events found")
            return

        async with aiofiles.open(event_log, "r") as f:
            content = await f.read()
        log_lines = content.splitlines()

        recent_lines = log_lines[-lines:] if len(log_lines) > lines else log_lines
        click.echo(f"📄 Recent events (last {len(recent_lines)} lines):")
        click.echo()
        for line in recent_lines:
            click.echo(line)

    asyncio.run(_logs())


@cli.command()
def version():
    """Show version information."""
    click.echo("qingcycle QingCloud lifecycle orchestrator")
    click.echo(f"Version: {__version__}")


if __name__ == "__main__":
    cli()
