"""CLI for room-overview: run the service, sync once, migrate or check config."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click

from room_overview import __version__
from room_overview.config import CONFIG_ENV_VAR, AppConfig, ConfigError, load_config

logger = logging.getLogger(__name__)


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Path to config.toml (default: ${CONFIG_ENV_VAR} or /etc/room-overview/config.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """room-overview: mirror ChurchTools room bookings as HTML and iCalendar."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the sync loop and the web server until SIGINT/SIGTERM."""
    config = _load(ctx.obj["config_path"])
    asyncio.run(_run_daemon(config))


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Run one sync cycle and print its outcome."""
    from room_overview.daemon import setup_observability, sync_once

    config = _load(ctx.obj["config_path"])
    setup_observability(config)
    outcome = asyncio.run(sync_once(config))

    if not outcome.ok:
        click.echo(f"Sync failed ({outcome.error_kind}): {outcome.error}", err=True)
        sys.exit(1)
    result = outcome.result
    assert result is not None
    click.echo(
        f"Sync complete: {result.inserted} inserted, {result.updated} updated, "
        f"{result.deleted} deleted, {result.unchanged} unchanged (version {result.version})"
    )


@cli.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Provision the database and run migrations to head."""
    from room_overview.core.logging import configure_logging
    from room_overview.daemon import build_database
    from room_overview.migrations import run_migrations

    config = _load(ctx.obj["config_path"])
    configure_logging(config.logging.level, config.logging.format)
    database = build_database(config)

    async def _migrate() -> None:
        await database.provision()
        await run_migrations(database.url)

    asyncio.run(_migrate())
    click.echo(f"Database {database.db_name} is up to date")


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate the configuration file and print a summary."""
    config = _load(ctx.obj["config_path"])
    click.echo(f"Config OK: {config.source_path}")
    click.echo(f"  ChurchTools host: {config.churchtools.host}")
    click.echo(
        f"  Pull frequency: {config.churchtools.pull_frequency_seconds:g}s, "
        f"window: {config.churchtools.window_days} day(s)"
    )
    click.echo(f"  Web: {config.web.addr}:{config.web.port} ({config.web.timezone})")
    click.echo(f"  Rooms ({len(config.rooms)}):")
    for room in config.rooms:
        click.echo(f"    {room.churchtools_id:<8} {room.ics_location}")


async def _run_daemon(config: AppConfig) -> None:
    from room_overview.daemon import RoomOverviewDaemon

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    daemon = RoomOverviewDaemon(config)
    await daemon.start()
    click.echo(f"room-overview running on {config.web.addr}:{config.web.port}")

    await shutdown_event.wait()
    await daemon.shutdown()
