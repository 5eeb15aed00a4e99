# src/durable_scheduler/cli/main.py

"""
CLI entrypoint.

Initializes logging, then dispatches to click commands:
- init-db / schedule / list / has-scheduled: store maintenance,
- run: one scheduler step (point cron at this),
- loop: a foreground polling trigger.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from pathlib import Path

import click

from ..config import Settings, get_settings
from ..errors import PersistenceError
from ..logging_setup import setup_logging
from ..tasks.task_models import TaskStatus
from ..tasks.task_scheduler import run_task_scheduler
from ..tasks.task_store import TaskStore
from .bootstrap import create_scheduler, register_app

logger = logging.getLogger(__name__)


def _parse_args_json(raw: str | None) -> list:
    if raw is None:
        return []
    try:
        val = json.loads(raw)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--args") from e
    if not isinstance(val, list):
        raise click.BadParameter("must be a JSON array", param_hint="--args")
    return val


def _scheduler_with_app(settings: Settings, app_target: str | None):
    scheduler = create_scheduler(settings=settings)
    try:
        register_app(scheduler, app_target)
    except (ImportError, AttributeError, ValueError, TypeError) as e:
        raise click.ClickException(f"cannot load --app {app_target}: {e}") from e
    return scheduler


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


@click.group()
@click.option("--db", "db_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="SQLite database file (overrides DSCHED_DB_PATH).")
@click.pass_context
def cli(ctx: click.Context, db_path: Path | None) -> None:
    """durable-scheduler - database-backed task scheduler"""
    settings: Settings = ctx.obj if isinstance(ctx.obj, Settings) else get_settings()
    if db_path is not None:
        settings = dataclasses.replace(settings, db_path=db_path, data_dir=db_path.parent)
    ctx.obj = settings


@cli.command("init-db")
@click.pass_obj
def init_db(settings: Settings) -> None:
    """Create the task table if it does not exist."""
    try:
        store = TaskStore(settings.db_path)
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Schema ready: {store.db_path}")


@cli.command()
@click.argument("name")
@click.option("--at", "at_ts", type=float, default=None, help="Due time as epoch seconds.")
@click.option("--in", "in_seconds", type=float, default=None, help="Due in N seconds from now.")
@click.option("--args", "args_json", default=None, help="Handler arguments as a JSON array.")
@click.pass_obj
def schedule(settings: Settings, name: str, at_ts: float | None, in_seconds: float | None,
             args_json: str | None) -> None:
    """Create a pending task NAME."""
    if at_ts is not None and in_seconds is not None:
        raise click.UsageError("--at and --in are mutually exclusive")

    args = _parse_args_json(args_json)
    if at_ts is not None:
        when = at_ts
    else:
        when = time.time() + max(0.0, in_seconds or 0.0)

    scheduler = create_scheduler(settings=settings)
    try:
        task_id = scheduler.create_schedule(name, when, args)
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Task {task_id} scheduled ({name} at {_fmt_ts(int(when))}).")


@cli.command()
@click.option("--app", "app_target", default=None, help="Handler registration hook, 'module:function'.")
@click.pass_obj
def run(settings: Settings, app_target: str | None) -> None:
    """Run one scheduler step: cleanup, stall release, claim, dispatch."""
    scheduler = _scheduler_with_app(settings, app_target)
    report = scheduler.run()
    click.echo(
        f"claimed={report.claimed} complete={report.completed} failed={report.failed} "
        f"deferred={report.deferred} released={report.released} deleted={report.deleted}"
    )


@cli.command()
@click.option("--app", "app_target", default=None, help="Handler registration hook, 'module:function'.")
@click.option("--interval", type=float, default=None, help="Seconds between runs (default DSCHED_POLL_INTERVAL).")
@click.option("--ticks", type=int, default=None, help="Stop after N runs.")
@click.pass_obj
def loop(settings: Settings, app_target: str | None, interval: float | None, ticks: int | None) -> None:
    """Run the scheduler repeatedly until interrupted."""
    scheduler = _scheduler_with_app(settings, app_target)
    interval_s = float(interval if interval is not None else settings.poll_interval)

    logger.info("Polling every %.1fs. Press Ctrl+C to stop.", interval_s)
    try:
        asyncio.run(run_task_scheduler(scheduler, interval_seconds=interval_s, max_ticks=ticks))
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping.")
    click.echo("Stopped.")


@cli.command("list")
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=None)
@click.option("--name", default=None)
@click.option("--limit", type=int, default=50, show_default=True)
@click.pass_obj
def list_cmd(settings: Settings, status: str | None, name: str | None, limit: int) -> None:
    """List tasks, earliest schedule_time first."""
    scheduler = create_scheduler(settings=settings)
    try:
        tasks = scheduler.store.list_tasks(
            status=TaskStatus(status) if status else None,
            name=name,
            limit=limit,
        )
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e

    if not tasks:
        click.echo("No tasks.")
        return

    for t in tasks:
        line = (
            f"{t.id:>6}  {t.status.value:<11}  {t.name:<24}  due={_fmt_ts(t.schedule_time)}  "
            f"attempt={_fmt_ts(t.last_attempt)}  args={json.dumps(t.args, ensure_ascii=False)}"
        )
        if t.info:
            line += f"  info={t.info}"
        click.echo(line)


@cli.command("has-scheduled")
@click.argument("name")
@click.pass_context
def has_scheduled(ctx: click.Context, name: str) -> None:
    """Exit 0 if NAME is pending or in progress, 1 otherwise."""
    scheduler = create_scheduler(settings=ctx.obj)
    found = scheduler.has_scheduled(name)
    click.echo("yes" if found else "no")
    ctx.exit(0 if found else 1)


def main() -> None:
    settings = get_settings()

    console_level = getattr(logging, settings.log_level, logging.INFO)
    if not isinstance(console_level, int):
        console_level = logging.INFO
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.debug("Starting %s", settings.app_name)
    cli(obj=settings)


if __name__ == "__main__":
    main()
