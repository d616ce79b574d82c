"""CLI for sitekeeper — run the scheduler daemon or trigger its jobs once."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import click

from sitekeeper.config import ConfigError, SitekeeperConfig, load_config
from sitekeeper.core.logging import configure_logging
from sitekeeper.core.models import format_local_datetime
from sitekeeper.core.recurrence import expand

logger = logging.getLogger(__name__)

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _load(config_path: Path | None, component: str) -> SitekeeperConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        config.logging.level,
        config.logging.format,
        config.logging.log_root,
        component=component,
    )
    return config


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to sitekeeper.toml (default: $SITEKEEPER_CONFIG or ./sitekeeper.toml)",
)
dry_run_option = click.option(
    "--dry-run", is_flag=True, help="Compute the changes and log them without committing"
)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """sitekeeper — keeps a static site's event data current."""


@cli.command()
@config_option
def run(config_path: Path | None) -> None:
    """Start the scheduler daemon (timers, webhook server, deployment tracking)."""
    config = _load(config_path, component="scheduler")
    click.echo(f"Starting sitekeeper for {config.github.owner}/{config.github.repo}")
    asyncio.run(_start_daemon(config))


async def _start_daemon(config: SitekeeperConfig) -> None:
    from sitekeeper.daemon import SchedulerDaemon

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    daemon = SchedulerDaemon(config)
    await daemon.start()
    click.echo("sitekeeper running")

    await shutdown_event.wait()
    await daemon.shutdown()


async def _run_job_once(config: SitekeeperConfig, job: str):
    from sitekeeper.core.scheduler import CLEANUP_JOB, EventScheduler
    from sitekeeper.daemon import build_audit, build_store

    store = build_store(config)
    audit = build_audit(config)
    try:
        scheduler = EventScheduler(store, config.scheduler, audit)
        if job == CLEANUP_JOB:
            return await scheduler.trigger_cleanup()
        return await scheduler.trigger_repeating_events()
    finally:
        await audit.aclose()
        await store.aclose()


def _run_job_command(config_path: Path | None, dry_run: bool, job: str) -> None:
    config = _load(config_path, component="cli")
    if dry_run:
        config.scheduler.dry_run = True

    result = asyncio.run(_run_job_once(config, job))
    if not result.ok:
        click.echo(f"{job} failed: {result.error}", err=True)
        sys.exit(1)

    click.echo(result.summary)
    if result.commit:
        click.echo(f"Committed {result.commit[:7]}")


@cli.command()
@config_option
@dry_run_option
def cleanup(config_path: Path | None, dry_run: bool) -> None:
    """Prune past events and elapsed exclusion dates once."""
    from sitekeeper.core.scheduler import CLEANUP_JOB

    _run_job_command(config_path, dry_run, CLEANUP_JOB)


@cli.command()
@config_option
@dry_run_option
def schedule(config_path: Path | None, dry_run: bool) -> None:
    """Materialize recurrence rules into the events document once."""
    from sitekeeper.core.scheduler import REPEATING_JOB

    _run_job_command(config_path, dry_run, REPEATING_JOB)


cli.add_command(schedule, name="repeating")


@cli.command("expand")
@click.option(
    "--weekday",
    required=True,
    type=click.IntRange(0, 6),
    help="Day of week, 0=Sunday through 6=Saturday",
)
@click.option("--time", "time_of_day", required=True, help="Local time of day, HH:MM")
@click.option("--days", default=28, show_default=True, type=click.IntRange(min=0))
@click.option("--timezone", default="Europe/London", show_default=True)
def expand_cmd(weekday: int, time_of_day: str, days: int, timezone: str) -> None:
    """Print the occurrences a rule would produce from now on."""
    now = datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)
    try:
        occurrences = expand(now, now + timedelta(days=days), weekday, time_of_day)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--time") from exc

    if not occurrences:
        click.echo("No occurrences in window.")
        return
    for moment in occurrences:
        click.echo(f"{_WEEKDAY_NAMES[weekday]}  {format_local_datetime(moment)}")
