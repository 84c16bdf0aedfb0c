"""Tick orchestration: phase ordering, fatal errors and serialization."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from recurring_scheduler.config import Settings
from recurring_scheduler.domain.reports import TickReport
from recurring_scheduler.errors import StoreReadError, StoreWriteError
from recurring_scheduler.notifications import CollectingNotificationSink
from recurring_scheduler.runner import SchedulerRunner
from recurring_scheduler.stores.memory import InMemoryRecurrenceStore

NOW = datetime(2024, 6, 15, 9, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


class _SlowStore(InMemoryRecurrenceStore):
    """Track how many ticks are enumerating rules at the same time."""

    def __init__(self, rules=()):
        super().__init__(rules)
        self.active = 0
        self.max_active = 0

    async def list_active_recurring_rules(self, now):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().list_active_recurring_rules(now)
        finally:
            self.active -= 1


class _UnreadableStore(InMemoryRecurrenceStore):
    async def list_active_recurring_rules(self, now):
        raise StoreReadError("connection refused")


@pytest.mark.asyncio
async def test_tick_runs_all_three_procedures(make_rule) -> None:
    rules = [
        make_rule("due", last_processed=NOW - 25 * HOUR),
        make_rule("soon", frequency="weekly", last_processed=NOW - 6 * DAY),
        make_rule("quiet", frequency="yearly", last_processed=NOW - DAY),
    ]
    store = InMemoryRecurrenceStore(rules)
    sink = CollectingNotificationSink()
    runner = SchedulerRunner.from_settings(store, Settings(), sink=sink)

    report = await runner.run_tick(NOW)

    assert isinstance(report, TickReport)
    assert report.ok
    assert report.due.materialized_rule_ids == ["due"]
    # The processed rule's next cycle lands inside the horizon.
    assert sorted(c.rule_id for c in report.upcoming) == ["due", "soon"]
    assert report.missed == []
    assert len(sink.upcoming_cycles) == 2
    assert report.duration_seconds >= 0


@pytest.mark.asyncio
async def test_processed_rule_is_not_reported_missed(make_rule) -> None:
    # Overdue by two days: without processing it would be flagged missed.
    store = InMemoryRecurrenceStore([make_rule("r1", last_processed=NOW - 3 * DAY)])
    runner = SchedulerRunner(store)

    report = await runner.run_tick(NOW)

    assert report.due.materialized == 1
    assert report.missed == []
    assert [c.next_due for c in report.upcoming] == [NOW + DAY]


@pytest.mark.asyncio
async def test_failed_rule_is_still_reported_missed(make_rule) -> None:
    class _RejectingStore(InMemoryRecurrenceStore):
        async def materialize_cycle(self, *args, **kwargs):
            raise StoreWriteError("disk full", rule_id="r1")

    store = _RejectingStore([make_rule("r1", last_processed=NOW - 3 * DAY)])

    report = await SchedulerRunner(store).run_tick(NOW)

    assert not report.ok
    assert report.due.failed_rule_ids == ["r1"]
    assert [c.rule_id for c in report.missed] == ["r1"]


@pytest.mark.asyncio
async def test_read_failure_aborts_tick(make_rule) -> None:
    runner = SchedulerRunner(_UnreadableStore([make_rule("r1")]))

    with pytest.raises(StoreReadError):
        await runner.run_tick(NOW)


@pytest.mark.asyncio
async def test_ticks_do_not_overlap(make_rule) -> None:
    store = _SlowStore([make_rule(f"r{i}", last_processed=NOW - 2 * DAY) for i in range(3)])
    runner = SchedulerRunner(store)

    first, second = await asyncio.gather(runner.run_tick(NOW), runner.run_tick(NOW))

    assert store.max_active == 1
    assert first.due.materialized + second.due.materialized == 3
    assert len(store.instances) == 3


@pytest.mark.asyncio
async def test_ticks_share_store_guard_across_runners(make_rule) -> None:
    store = _SlowStore([make_rule("r1", last_processed=NOW - 2 * DAY)])

    await asyncio.gather(
        SchedulerRunner(store).run_tick(NOW),
        SchedulerRunner(store).run_tick(NOW),
    )

    assert store.max_active == 1
    assert len(store.instances_for("r1")) == 1


@pytest.mark.asyncio
async def test_per_tick_overrides(make_rule) -> None:
    store = InMemoryRecurrenceStore(
        [
            make_rule("far", frequency="weekly", last_processed=NOW - 2 * DAY),
            make_rule("late", last_processed=NOW - 30 * HOUR),
        ]
    )
    runner = SchedulerRunner(store)

    report = await runner.run_tick(NOW, horizon=7 * DAY, tolerance=HOUR)

    # "late" is processed first, so it is neither missed nor in the horizon twice.
    assert report.due.materialized_rule_ids == ["late"]
    assert sorted(c.rule_id for c in report.upcoming) == ["far", "late"]
    assert report.missed == []


def test_from_settings_wires_configuration(memory_store) -> None:
    settings = Settings(
        upcoming_horizon_hours=12,
        missed_tolerance_hours=2,
        cycle_mode="calendar",
        max_concurrency=3,
    )

    runner = SchedulerRunner.from_settings(memory_store, settings)

    assert runner.notifier.horizon == timedelta(hours=12)
    assert runner.detector.tolerance == timedelta(hours=2)
    assert runner.processor.mode == "calendar"
    assert runner.notifier.mode == "calendar"
    assert runner.processor.max_concurrency == 3
