"""
Abstract store interfaces for the recurring transaction scheduler.

The scheduler core only talks to a `RecurrenceStore`. Concrete stores
(in-memory, Postgres) should subclass `AbstractRecurrenceStore`, which requires
an atomic `materialize_cycle` next to the three primitive operations and
supplies a no-op `tick_guard`.
"""

from __future__ import annotations

import abc
import contextlib
from datetime import datetime
from typing import AsyncIterator, Optional, Protocol, Sequence, runtime_checkable

from recurring_scheduler.domain.models import MaterializedInstance, RecurrenceRule

InstanceId = str


class _Unset:
    """Sentinel type: no compare-and-update precondition."""

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "UNSET"


UNSET = _Unset()


@runtime_checkable
class RecurrenceStore(Protocol):
    """
    Common interface every recurrence store must implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    """

    name: str

    async def list_active_recurring_rules(self, now: datetime) -> Sequence[RecurrenceRule]:
        """
        Return recurring rules whose `end_date` is absent or not before `now`.

        Raises
        ------
        StoreReadError
            If the rules cannot be enumerated.
        """
        ...

    async def insert_materialized_instance(self, instance: MaterializedInstance) -> InstanceId:
        """Persist a new instance and return its identifier (raises StoreWriteError)."""
        ...

    async def update_last_processed(
        self,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> None:
        """
        Set `last_processed` on a rule.

        When `expected_previous` is given the update only applies if the stored
        value still equals it; otherwise `StaleRuleError` is raised.
        """
        ...

    async def materialize_cycle(
        self,
        instance: MaterializedInstance,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> InstanceId:
        """Insert `instance` and advance the rule's `last_processed` atomically."""
        ...

    def tick_guard(self) -> contextlib.AbstractAsyncContextManager[None]:
        """Context manager held for the duration of a tick."""
        ...


class AbstractRecurrenceStore(abc.ABC):
    """
    ABC helper for class-based store implementations.

    Subclasses set `name`, implement the three primitives and provide an
    atomic `materialize_cycle`; a plain insert followed by an update would
    leave an orphan instance behind when the update fails.
    """

    name: str

    @abc.abstractmethod
    async def list_active_recurring_rules(
        self, now: datetime
    ) -> Sequence[RecurrenceRule]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_materialized_instance(
        self, instance: MaterializedInstance
    ) -> InstanceId:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def update_last_processed(
        self,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def materialize_cycle(
        self,
        instance: MaterializedInstance,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> InstanceId:  # pragma: no cover - interface only
        """
        Insert `instance` and advance `last_processed` as one all-or-nothing unit.

        If the precondition fails or either write fails, no instance may remain
        and `last_processed` must be unchanged, so the next tick can retry.
        """
        raise NotImplementedError

    @contextlib.asynccontextmanager
    async def tick_guard(self) -> AsyncIterator[None]:
        yield

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


__all__ = [
    "InstanceId",
    "UNSET",
    "RecurrenceStore",
    "AbstractRecurrenceStore",
]
