"""
Notification sinks for upcoming and missed cycles.

Delivery transports (email, push) live outside this package; a host process
plugs one in by implementing `NotificationSink`. The default sink only logs.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from recurring_scheduler.domain.models import MissedCycle, UpcomingCycle
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    async def upcoming(self, cycle: UpcomingCycle) -> None: ...

    async def missed(self, cycle: MissedCycle) -> None: ...


class LoggingNotificationSink:
    """Log one line per upcoming notification or missed alert."""

    async def upcoming(self, cycle: UpcomingCycle) -> None:
        log.info(
            f"Notification for rule {cycle.rule_id}: {cycle.label} due on {cycle.next_due.isoformat()}",
            extra={
                "rule_id": cycle.rule_id,
                "owner_id": cycle.owner_id,
                "next_due": cycle.next_due.isoformat(),
            },
        )

    async def missed(self, cycle: MissedCycle) -> None:
        log.warning(
            f"Missed cycle alert for rule {cycle.rule_id}: {cycle.label} "
            f"due on {cycle.next_expected.isoformat()}",
            extra={
                "rule_id": cycle.rule_id,
                "owner_id": cycle.owner_id,
                "next_expected": cycle.next_expected.isoformat(),
            },
        )


class CollectingNotificationSink:
    """Keep every event in memory; used by tests and the CLI dry runs."""

    def __init__(self) -> None:
        self.upcoming_cycles: List[UpcomingCycle] = []
        self.missed_cycles: List[MissedCycle] = []

    async def upcoming(self, cycle: UpcomingCycle) -> None:
        self.upcoming_cycles.append(cycle)

    async def missed(self, cycle: MissedCycle) -> None:
        self.missed_cycles.append(cycle)


__all__ = ["NotificationSink", "LoggingNotificationSink", "CollectingNotificationSink"]
