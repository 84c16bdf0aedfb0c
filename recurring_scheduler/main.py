from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import typer
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import TypeAdapter

from recurring_scheduler.config import Settings, get_settings
from recurring_scheduler.domain.models import RecurrenceRule, ensure_utc
from recurring_scheduler.infrastructure.db_factory import PoolManager
from recurring_scheduler.reporter import print_cycles, print_tick_report
from recurring_scheduler.runner import SchedulerRunner
from recurring_scheduler.stores import AbstractRecurrenceStore, build_store
from recurring_scheduler.stores.memory import InMemoryRecurrenceStore
from recurring_scheduler.stores.postgres import PostgresRecurrenceStore
from recurring_scheduler.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Recurring transaction scheduler CLI.")
log = get_logger(__name__)

_RULES_ADAPTER = TypeAdapter(List[RecurrenceRule])

NOW_OPTION = typer.Option(
    None, "--now", help="Logical tick time (ISO 8601). Defaults to the current UTC time."
)
RULES_FILE_OPTION = typer.Option(
    None,
    "--rules-file",
    "-f",
    help="JSON list of rules to load into the in-memory store.",
    exists=True,
    dir_okay=False,
)


def _parse_now(value: Optional[str]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid ISO timestamp: {value}") from exc


def load_rules(path: Path) -> List[RecurrenceRule]:
    """Read a JSON list of recurrence rules."""
    return _RULES_ADAPTER.validate_json(path.read_bytes())


def _open_store(settings: Settings, rules_file: Optional[Path]) -> AbstractRecurrenceStore:
    if rules_file is not None:
        if settings.store_backend != "memory":
            raise typer.BadParameter("--rules-file is only supported with STORE_BACKEND=memory")
        return InMemoryRecurrenceStore(load_rules(rules_file))
    return build_store(settings)


async def _release(store: AbstractRecurrenceStore) -> None:
    await store.close()
    await PoolManager().close_all()


def _setup() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)
    return settings


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"store={settings.store_backend} "
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"horizon={settings.upcoming_horizon_hours}h tolerance={settings.missed_tolerance_hours}h "
        f"mode={settings.cycle_mode} concurrency={settings.max_concurrency} "
        f"interval={settings.tick_interval_seconds}s"
    )


@app.command()
def tick(
    now: Optional[str] = NOW_OPTION,
    rules_file: Optional[Path] = RULES_FILE_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """
    Run one scheduler tick and print its report.
    """
    settings = _setup()
    tick_now = _parse_now(now)

    async def _run():
        store = _open_store(settings, rules_file)
        try:
            return await SchedulerRunner.from_settings(store, settings).run_tick(tick_now)
        finally:
            await _release(store)

    report = asyncio.run(_run())
    if as_json:
        typer.echo(report.model_dump_json(indent=2))
    else:
        print_tick_report(report)


@app.command()
def upcoming(
    now: Optional[str] = NOW_OPTION,
    horizon_hours: Optional[float] = typer.Option(
        None, "--horizon-hours", min=0, help="Look-ahead window (default from settings)."
    ),
    rules_file: Optional[Path] = RULES_FILE_OPTION,
) -> None:
    """
    List rules that become due within the look-ahead window. Read-only.
    """
    settings = _setup()
    tick_now = _parse_now(now)
    horizon = timedelta(hours=horizon_hours) if horizon_hours is not None else None

    async def _run():
        store = _open_store(settings, rules_file)
        try:
            runner = SchedulerRunner.from_settings(store, settings)
            return list(await runner.notifier.find_upcoming(tick_now, horizon))
        finally:
            await _release(store)

    print_cycles("Upcoming cycles", asyncio.run(_run()))


@app.command()
def missed(
    now: Optional[str] = NOW_OPTION,
    tolerance_hours: Optional[float] = typer.Option(
        None, "--tolerance-hours", min=0, help="Grace window (default from settings)."
    ),
    rules_file: Optional[Path] = RULES_FILE_OPTION,
) -> None:
    """
    List rules whose expected cycle passed beyond the tolerance. Read-only.
    """
    settings = _setup()
    tick_now = _parse_now(now)
    tolerance = timedelta(hours=tolerance_hours) if tolerance_hours is not None else None

    async def _run():
        store = _open_store(settings, rules_file)
        try:
            runner = SchedulerRunner.from_settings(store, settings)
            return list(await runner.detector.find_missed(tick_now, tolerance))
        finally:
            await _release(store)

    print_cycles("Missed cycles", asyncio.run(_run()))


@app.command("init-db")
def init_db() -> None:
    """
    Create the Postgres tables used by the Postgres store.
    """
    _setup()

    async def _run() -> None:
        store = PostgresRecurrenceStore()
        try:
            await store.ensure_schema()
        finally:
            await _release(store)

    asyncio.run(_run())
    typer.echo("Schema ready.")


async def _serve(settings: Settings, rules_file: Optional[Path]) -> None:
    store = _open_store(settings, rules_file)
    runner = SchedulerRunner.from_settings(store, settings)

    async def _tick_job() -> None:
        try:
            report = await runner.run_tick(datetime.now(timezone.utc))
        except Exception:  # noqa: BLE001 - keep serving; next interval retries
            log.exception("[SERVE] Tick failed")
            return
        log.info("[SERVE] Tick report", extra={"report": json.loads(report.model_dump_json())})

    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    scheduler.add_job(
        _tick_job,
        trigger="interval",
        seconds=settings.tick_interval_seconds,
        id="recurring_scheduler_tick",
        next_run_time=datetime.now(timezone.utc),
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=settings.tick_interval_seconds,
    )
    scheduler.start()
    log.info(
        "[SERVE] Scheduler started",
        extra={"interval_seconds": settings.tick_interval_seconds, "store": store.name},
    )
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await _release(store)


@app.command()
def serve(rules_file: Optional[Path] = RULES_FILE_OPTION) -> None:
    """
    Run ticks periodically until interrupted.
    """
    settings = _setup()
    asyncio.run(_serve(settings, rules_file))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
