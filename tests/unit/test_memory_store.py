from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from recurring_scheduler.domain.models import MaterializedInstance
from recurring_scheduler.errors import RuleNotFoundError, StaleRuleError, StoreWriteError
from recurring_scheduler.processors.due import DueCycleProcessor
from recurring_scheduler.stores import AbstractRecurrenceStore, RecurrenceStore
from recurring_scheduler.stores.memory import InMemoryRecurrenceStore

T = datetime(2024, 1, 1, tzinfo=timezone.utc)
DAY = timedelta(days=1)
HOUR = timedelta(hours=1)


class _TwoStepStore(AbstractRecurrenceStore):
    """Only the three primitives, no atomic materialize_cycle."""

    name = "two-step"

    async def list_active_recurring_rules(self, now):
        return []

    async def insert_materialized_instance(self, instance):
        return "i1"

    async def update_last_processed(self, rule_id, timestamp, expected_previous=None):
        return None


class _FlakyUpdateStore(InMemoryRecurrenceStore):
    """Fail the `last_processed` write once, after the instance was inserted."""

    def __init__(self, rules=()):
        super().__init__(rules)
        self.update_failures = 1

    def _apply_update(self, rule_id, timestamp):
        if self.update_failures:
            self.update_failures -= 1
            raise StoreWriteError("lost connection during update", rule_id=rule_id)
        super()._apply_update(rule_id, timestamp)


def test_stores_satisfy_protocol() -> None:
    assert isinstance(InMemoryRecurrenceStore(), RecurrenceStore)


def test_store_without_atomic_materialize_is_rejected() -> None:
    with pytest.raises(TypeError):
        _TwoStepStore()


@pytest.mark.asyncio
async def test_list_filters_non_recurring_and_ended(make_rule) -> None:
    store = InMemoryRecurrenceStore(
        [
            make_rule("live"),
            make_rule("ends-now", end_date=T + DAY),
            make_rule("ended", end_date=T),
            make_rule("one-off", is_recurring=False),
            make_rule("no-freq", frequency=None),
        ]
    )

    rules = await store.list_active_recurring_rules(T + DAY)

    # Frequency is the evaluator's concern, not the store's.
    assert sorted(rule.id for rule in rules) == ["ends-now", "live", "no-freq"]


@pytest.mark.asyncio
async def test_update_with_matching_precondition(make_rule) -> None:
    store = InMemoryRecurrenceStore([make_rule("r1", last_processed=T)])

    await store.update_last_processed("r1", T + DAY, expected_previous=T)

    assert store.get_rule("r1").last_processed == T + DAY


@pytest.mark.asyncio
async def test_update_with_stale_precondition(make_rule) -> None:
    store = InMemoryRecurrenceStore([make_rule("r1", last_processed=T)])

    with pytest.raises(StaleRuleError) as excinfo:
        await store.update_last_processed("r1", T + DAY, expected_previous=None)

    assert excinfo.value.rule_id == "r1"
    assert store.get_rule("r1").last_processed == T


@pytest.mark.asyncio
async def test_update_never_moves_backwards(make_rule) -> None:
    store = InMemoryRecurrenceStore([make_rule("r1", last_processed=T)])

    with pytest.raises(StoreWriteError):
        await store.update_last_processed("r1", T - DAY)


@pytest.mark.asyncio
async def test_update_unknown_rule(memory_store) -> None:
    with pytest.raises(RuleNotFoundError):
        await memory_store.update_last_processed("ghost", T)


@pytest.mark.asyncio
async def test_materialize_is_all_or_nothing(make_rule) -> None:
    rule = make_rule("r1", last_processed=T)
    store = InMemoryRecurrenceStore([rule])
    instance = MaterializedInstance.from_rule(rule, T + DAY)

    with pytest.raises(StaleRuleError):
        await store.materialize_cycle(instance, "r1", T + DAY, expected_previous=T - DAY)

    assert store.instances == []
    assert store.get_rule("r1").last_processed == T


@pytest.mark.asyncio
async def test_concurrent_materialize_only_one_wins(make_rule) -> None:
    rule = make_rule("r1", last_processed=T)
    store = InMemoryRecurrenceStore([rule])
    instance = MaterializedInstance.from_rule(rule, T + DAY)

    results = await asyncio.gather(
        store.materialize_cycle(instance, "r1", T + DAY, expected_previous=T),
        store.materialize_cycle(instance, "r1", T + DAY, expected_previous=T),
        return_exceptions=True,
    )

    assert sum(isinstance(r, str) for r in results) == 1
    assert sum(isinstance(r, StaleRuleError) for r in results) == 1
    assert len(store.instances_for("r1")) == 1


@pytest.mark.asyncio
async def test_failed_update_leaves_no_instance_and_retries_once(make_rule) -> None:
    store = _FlakyUpdateStore([make_rule("r1", last_processed=T)])
    processor = DueCycleProcessor(store)

    first = await processor.process(T + 25 * HOUR)

    assert first.failed_rule_ids == ["r1"]
    assert store.instances == []
    assert store.get_rule("r1").last_processed == T

    second = await processor.process(T + 26 * HOUR)

    assert second.materialized_rule_ids == ["r1"]
    assert len(store.instances_for("r1")) == 1
    assert store.get_rule("r1").last_processed == T + 26 * HOUR


@pytest.mark.asyncio
async def test_tick_guard_is_exclusive(memory_store) -> None:
    order = []

    async def _hold(tag: str) -> None:
        async with memory_store.tick_guard():
            order.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-out")

    await asyncio.gather(_hold("a"), _hold("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


def test_naive_timestamps_are_read_as_utc(make_rule) -> None:
    rule = make_rule(last_processed=datetime(2024, 1, 1, 12, 0))
    assert rule.last_processed == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
