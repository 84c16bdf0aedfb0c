"""
Missed-cycle detection.

A cycle is missed when its expected instant lies before `now` by more than the
tolerance window. The tolerance absorbs ordinary tick jitter. Missed cycles are
only reported; they are never materialized retroactively.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import partial
from typing import Iterable, Optional, Sequence

from recurring_scheduler.domain.cycles import DEFAULT_MISSED_TOLERANCE, CycleMode, evaluate_missed
from recurring_scheduler.domain.models import MissedCycle, RecurrenceRule, ensure_utc
from recurring_scheduler.notifications import LoggingNotificationSink, NotificationSink
from recurring_scheduler.processors.projection import CycleProjection
from recurring_scheduler.stores.abstract import RecurrenceStore
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)


class MissedCycleDetector:
    name: str = "missed"

    def __init__(
        self,
        store: RecurrenceStore,
        tolerance: timedelta = DEFAULT_MISSED_TOLERANCE,
        mode: CycleMode = "fixed",
        sink: Optional[NotificationSink] = None,
    ) -> None:
        if tolerance < timedelta(0):
            raise ValueError("tolerance must not be negative")
        self.store = store
        self.tolerance = tolerance
        self.mode = mode
        self.sink = sink or LoggingNotificationSink()

    async def find_missed(
        self,
        now: datetime,
        tolerance: Optional[timedelta] = None,
        rules: Optional[Sequence[RecurrenceRule]] = None,
    ) -> CycleProjection[MissedCycle]:
        now = ensure_utc(now)
        if rules is None:
            rules = await self.store.list_active_recurring_rules(now)
        grace = self.tolerance if tolerance is None else tolerance
        return CycleProjection(
            rules, partial(evaluate_missed, now=now, tolerance=grace, mode=self.mode)
        )

    async def alert(self, cycles: Iterable[MissedCycle]) -> int:
        sent = 0
        for cycle in cycles:
            try:
                await self.sink.missed(cycle)
            except Exception:  # noqa: BLE001 - a failing sink must not abort the tick
                log.exception(
                    f"[MISSED] Alert failed for rule {cycle.rule_id}",
                    extra={"rule_id": cycle.rule_id},
                )
                continue
            sent += 1
        log.info(f"[MISSED] Sent {sent} alerts for missed recurring transactions")
        return sent


__all__ = ["MissedCycleDetector"]
