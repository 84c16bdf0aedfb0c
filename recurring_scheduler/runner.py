"""
Scheduler runner: one tick = due processing, upcoming notification, missed detection.

Usage (example from a host process):
    from recurring_scheduler.runner import SchedulerRunner
    from recurring_scheduler.stores import InMemoryRecurrenceStore

    runner = SchedulerRunner.from_settings(InMemoryRecurrenceStore(rules))
    report = await runner.run_tick(now)

Ticks never overlap: the runner holds an `asyncio.Lock` for the whole tick and
enters the store's `tick_guard()` so other processes sharing the store wait
too. Nothing is carried from one tick to the next; each tick reads a fresh
snapshot. Only a failure to enumerate rules aborts a tick (`StoreReadError`).
"""

from __future__ import annotations

import asyncio
import enum
from datetime import datetime, timedelta
from typing import Optional

from recurring_scheduler.config import Settings, get_settings
from recurring_scheduler.domain.models import ensure_utc
from recurring_scheduler.domain.reports import TickReport
from recurring_scheduler.errors import StoreReadError
from recurring_scheduler.notifications import NotificationSink
from recurring_scheduler.processors.due import DueCycleProcessor
from recurring_scheduler.processors.missed import MissedCycleDetector
from recurring_scheduler.processors.upcoming import UpcomingCycleNotifier
from recurring_scheduler.stores.abstract import RecurrenceStore
from recurring_scheduler.utils.logging import get_logger
from recurring_scheduler.utils.profiler import profile_block

log = get_logger(__name__)


class TickPhase(str, enum.Enum):
    START = "start"
    PROCESS_DUE = "process_due"
    NOTIFY_UPCOMING = "notify_upcoming"
    DETECT_MISSED = "detect_missed"
    DONE = "done"


class SchedulerRunner:
    """
    Orchestrate the three procedures over one snapshot per tick.
    """

    def __init__(
        self,
        store: RecurrenceStore,
        processor: Optional[DueCycleProcessor] = None,
        notifier: Optional[UpcomingCycleNotifier] = None,
        detector: Optional[MissedCycleDetector] = None,
    ) -> None:
        self.store = store
        self.processor = processor or DueCycleProcessor(store)
        self.notifier = notifier or UpcomingCycleNotifier(store)
        self.detector = detector or MissedCycleDetector(store)
        self._tick_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        store: RecurrenceStore,
        settings: Optional[Settings] = None,
        sink: Optional[NotificationSink] = None,
    ) -> "SchedulerRunner":
        settings = settings or get_settings()
        return cls(
            store,
            processor=DueCycleProcessor(
                store, mode=settings.cycle_mode, max_concurrency=settings.max_concurrency
            ),
            notifier=UpcomingCycleNotifier(
                store, horizon=settings.upcoming_horizon, mode=settings.cycle_mode, sink=sink
            ),
            detector=MissedCycleDetector(
                store, tolerance=settings.missed_tolerance, mode=settings.cycle_mode, sink=sink
            ),
        )

    async def run_tick(
        self,
        now: datetime,
        horizon: Optional[timedelta] = None,
        tolerance: Optional[timedelta] = None,
    ) -> TickReport:
        """
        Run one full tick at logical time `now`.

        Parameters
        ----------
        now : datetime
            Logical tick time; callers pass non-decreasing values.
        horizon : timedelta, optional
            Override the notifier's look-ahead window for this tick.
        tolerance : timedelta, optional
            Override the detector's grace window for this tick.

        Returns
        -------
        TickReport
            Due-processing report plus the upcoming and missed cycles.

        Raises
        ------
        StoreReadError
            If the store cannot enumerate rules. No partial report is produced.
        """
        now = ensure_utc(now)
        async with self._tick_lock:
            async with self.store.tick_guard():
                with profile_block("tick") as stats:
                    report = await self._run_phases(now, horizon, tolerance)

        report.duration_seconds = round(stats.duration_seconds, 4)
        report.peak_rss_bytes = stats.peak_rss_bytes
        log.info(
            "[TICK COMPLETE]",
            extra={
                "now": now.isoformat(),
                "materialized": report.due.materialized,
                "failed": len(report.due.failures),
                "upcoming": len(report.upcoming),
                "missed": len(report.missed),
                "duration_seconds": report.duration_seconds,
            },
        )
        return report

    async def _run_phases(
        self,
        now: datetime,
        horizon: Optional[timedelta],
        tolerance: Optional[timedelta],
    ) -> TickReport:
        phase = TickPhase.START
        log.info("[TICK START]", extra={"now": now.isoformat(), "store": self.store.name})
        try:
            rules = await self.store.list_active_recurring_rules(now)
        except StoreReadError:
            log.exception("[TICK ABORTED] Could not enumerate recurring rules")
            raise

        phase = TickPhase.PROCESS_DUE
        log.debug(f"[TICK] {phase.value}", extra={"rules": len(rules)})
        due = await self.processor.process(now, rules=rules)

        # Later phases see last_processed advanced for rules materialized above.
        phase = TickPhase.NOTIFY_UPCOMING
        log.debug(f"[TICK] {phase.value}")
        upcoming = list(await self.notifier.find_upcoming(now, horizon, rules=due.snapshot))
        await self.notifier.notify(upcoming)

        phase = TickPhase.DETECT_MISSED
        log.debug(f"[TICK] {phase.value}")
        missed = list(await self.detector.find_missed(now, tolerance, rules=due.snapshot))
        await self.detector.alert(missed)

        phase = TickPhase.DONE
        log.debug(f"[TICK] {phase.value}")
        return TickReport(now=now, due=due, upcoming=upcoming, missed=missed)


__all__ = ["SchedulerRunner", "TickPhase"]
