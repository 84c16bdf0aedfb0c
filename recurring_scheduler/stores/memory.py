"""
In-memory recurrence store.

Backs the unit tests and the CLI when `STORE_BACKEND=memory`. Writes are
serialized by an `asyncio.Lock`, so `materialize_cycle` checks the
compare-and-update precondition before inserting anything.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence

from recurring_scheduler.domain.models import MaterializedInstance, RecurrenceRule, ensure_utc
from recurring_scheduler.errors import RuleNotFoundError, StaleRuleError, StoreWriteError
from recurring_scheduler.stores.abstract import UNSET, AbstractRecurrenceStore, InstanceId, _Unset


class InMemoryRecurrenceStore(AbstractRecurrenceStore):
    """
    Keep rules and materialized instances in process memory.
    """

    name: str = "memory"

    def __init__(self, rules: Iterable[RecurrenceRule] = ()) -> None:
        self._rules: Dict[str, RecurrenceRule] = {}
        self._instances: Dict[InstanceId, MaterializedInstance] = {}
        self._write_lock = asyncio.Lock()
        self._tick_lock = asyncio.Lock()
        for rule in rules:
            self.add_rule(rule)

    # ------------------------------------------------------------------
    # Collaborator-side helpers (rule CRUD lives outside the scheduler)
    # ------------------------------------------------------------------

    def add_rule(self, rule: RecurrenceRule) -> None:
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> None:
        self._rules.pop(rule_id, None)

    def get_rule(self, rule_id: str) -> RecurrenceRule:
        return self._rules[rule_id]

    @property
    def rules(self) -> List[RecurrenceRule]:
        return list(self._rules.values())

    @property
    def instances(self) -> List[MaterializedInstance]:
        return list(self._instances.values())

    def instances_for(self, rule_id: str) -> List[MaterializedInstance]:
        return [i for i in self._instances.values() if i.source_rule_id == rule_id]

    # ------------------------------------------------------------------
    # RecurrenceStore
    # ------------------------------------------------------------------

    async def list_active_recurring_rules(self, now: datetime) -> Sequence[RecurrenceRule]:
        now = ensure_utc(now)
        return [
            rule
            for rule in self._rules.values()
            if rule.is_recurring and (rule.end_date is None or rule.end_date >= now)
        ]

    async def insert_materialized_instance(self, instance: MaterializedInstance) -> InstanceId:
        async with self._write_lock:
            return self._insert(instance)

    async def update_last_processed(
        self,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> None:
        async with self._write_lock:
            self._check_update(rule_id, timestamp, expected_previous)
            self._apply_update(rule_id, timestamp)

    async def materialize_cycle(
        self,
        instance: MaterializedInstance,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> InstanceId:
        async with self._write_lock:
            self._check_update(rule_id, timestamp, expected_previous)
            instance_id = self._insert(instance)
            try:
                self._apply_update(rule_id, timestamp)
            except Exception:
                del self._instances[instance_id]
                raise
            return instance_id

    @contextlib.asynccontextmanager
    async def tick_guard(self) -> AsyncIterator[None]:
        async with self._tick_lock:
            yield

    # ------------------------------------------------------------------
    # Internals (caller holds the write lock)
    # ------------------------------------------------------------------

    def _insert(self, instance: MaterializedInstance) -> InstanceId:
        instance_id = uuid.uuid4().hex
        self._instances[instance_id] = instance
        return instance_id

    def _check_update(
        self,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset,
    ) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule '{rule_id}' does not exist", rule_id=rule_id)
        if not isinstance(expected_previous, _Unset):
            expected = ensure_utc(expected_previous) if expected_previous is not None else None
            if rule.last_processed != expected:
                raise StaleRuleError(
                    f"Rule '{rule_id}' last_processed changed "
                    f"(expected {expected}, found {rule.last_processed})",
                    rule_id=rule_id,
                )
        if rule.last_processed is not None and ensure_utc(timestamp) < rule.last_processed:
            raise StoreWriteError(
                f"Refusing to move last_processed of '{rule_id}' backwards",
                rule_id=rule_id,
            )

    def _apply_update(self, rule_id: str, timestamp: datetime) -> None:
        self._rules[rule_id] = self._rules[rule_id].with_last_processed(timestamp)


__all__ = ["InMemoryRecurrenceStore"]
