"""
Upcoming-cycle prediction for proactive notifications.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import partial
from typing import Iterable, Optional, Sequence

from recurring_scheduler.domain.cycles import DEFAULT_UPCOMING_HORIZON, CycleMode, evaluate_upcoming
from recurring_scheduler.domain.models import RecurrenceRule, UpcomingCycle, ensure_utc
from recurring_scheduler.notifications import LoggingNotificationSink, NotificationSink
from recurring_scheduler.processors.projection import CycleProjection
from recurring_scheduler.stores.abstract import RecurrenceStore
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)


class UpcomingCycleNotifier:
    """
    Predict rules that become due within ``[now, now + horizon]``.

    Read-only: rule state is never touched. Rules already overdue at `now` are
    left to the missed-cycle detector.
    """

    name: str = "upcoming"

    def __init__(
        self,
        store: RecurrenceStore,
        horizon: timedelta = DEFAULT_UPCOMING_HORIZON,
        mode: CycleMode = "fixed",
        sink: Optional[NotificationSink] = None,
    ) -> None:
        if horizon < timedelta(0):
            raise ValueError("horizon must not be negative")
        self.store = store
        self.horizon = horizon
        self.mode = mode
        self.sink = sink or LoggingNotificationSink()

    async def find_upcoming(
        self,
        now: datetime,
        horizon: Optional[timedelta] = None,
        rules: Optional[Sequence[RecurrenceRule]] = None,
    ) -> CycleProjection[UpcomingCycle]:
        now = ensure_utc(now)
        if rules is None:
            rules = await self.store.list_active_recurring_rules(now)
        window = self.horizon if horizon is None else horizon
        return CycleProjection(
            rules, partial(evaluate_upcoming, now=now, horizon=window, mode=self.mode)
        )

    async def notify(self, cycles: Iterable[UpcomingCycle]) -> int:
        """Forward each cycle to the sink; returns how many were delivered."""
        sent = 0
        for cycle in cycles:
            try:
                await self.sink.upcoming(cycle)
            except Exception:  # noqa: BLE001 - a failing sink must not abort the tick
                log.exception(
                    f"[UPCOMING] Notification failed for rule {cycle.rule_id}",
                    extra={"rule_id": cycle.rule_id},
                )
                continue
            sent += 1
        log.info(f"[UPCOMING] Sent {sent} notifications for upcoming recurring transactions")
        return sent


__all__ = ["UpcomingCycleNotifier"]
