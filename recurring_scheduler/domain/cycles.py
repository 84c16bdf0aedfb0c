"""
Cycle arithmetic and pure scheduling decisions.

Every function here is a pure function of `(rule, now, ...)`: no store access,
no wall clock. Processors read a snapshot, ask these functions what to do, and
only then apply writes.

Two cycle modes exist:

- ``fixed`` (default): daily = 24h, weekly = 7 x 24h, monthly = 30 x 24h,
  yearly = 365 x 24h.
- ``calendar``: steps by calendar units with ``dateutil.relativedelta``
  (Jan 31 + 1 month = Feb 28/29, Feb 29 + 1 year = Feb 28). This is an opt-in
  deviation; due dates differ from fixed mode around month ends and leap years.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Literal, Optional

from dateutil.relativedelta import relativedelta

from recurring_scheduler.domain.models import (
    Frequency,
    MissedCycle,
    RecurrenceRule,
    UpcomingCycle,
)

CycleMode = Literal["fixed", "calendar"]

DEFAULT_UPCOMING_HORIZON = timedelta(days=3)
DEFAULT_MISSED_TOLERANCE = timedelta(hours=24)

FIXED_CYCLE_LENGTHS: Dict[Frequency, timedelta] = {
    Frequency.DAILY: timedelta(hours=24),
    Frequency.WEEKLY: timedelta(hours=7 * 24),
    Frequency.MONTHLY: timedelta(hours=30 * 24),
    Frequency.YEARLY: timedelta(hours=365 * 24),
}

CALENDAR_STEPS: Dict[Frequency, relativedelta] = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.YEARLY: relativedelta(years=1),
}


def cycle_length(frequency: Frequency) -> timedelta:
    """Fixed duration of one cycle for the given frequency."""
    return FIXED_CYCLE_LENGTHS[frequency]


def next_occurrence(
    reference: datetime, frequency: Frequency, mode: CycleMode = "fixed"
) -> datetime:
    """Instant one cycle after `reference`."""
    if mode == "calendar":
        return reference + CALENDAR_STEPS[frequency]
    return reference + cycle_length(frequency)


def is_active(rule: RecurrenceRule, now: datetime) -> bool:
    """
    Whether the scheduler should look at this rule at all.

    Inert rules (not recurring, missing/unknown frequency, or ended before
    `now`) are skipped by every procedure without being treated as errors.
    """
    if not rule.is_recurring or rule.cycle_frequency is None:
        return False
    return rule.end_date is None or rule.end_date >= now


def expected_next(rule: RecurrenceRule, mode: CycleMode = "fixed") -> Optional[datetime]:
    frequency = rule.cycle_frequency
    if frequency is None:
        return None
    return next_occurrence(rule.reference_time, frequency, mode)


def evaluate_due(rule: RecurrenceRule, now: datetime, mode: CycleMode = "fixed") -> bool:
    """
    True when at least one full cycle has elapsed since the rule's reference.

    However many cycles have elapsed, the answer is a single yes: callers
    materialize one instance and move `last_processed` to `now`.
    """
    frequency = rule.cycle_frequency
    if frequency is None or not is_active(rule, now):
        return False
    if mode == "calendar":
        return now >= next_occurrence(rule.reference_time, frequency, mode)
    elapsed = now - rule.reference_time
    return elapsed >= cycle_length(frequency)


def evaluate_upcoming(
    rule: RecurrenceRule,
    now: datetime,
    horizon: timedelta = DEFAULT_UPCOMING_HORIZON,
    mode: CycleMode = "fixed",
) -> Optional[UpcomingCycle]:
    """Project the rule's next due instant if it lands in ``[now, now + horizon]``."""
    if not is_active(rule, now):
        return None
    next_due = expected_next(rule, mode)
    if next_due is None or not (now <= next_due <= now + horizon):
        return None
    return UpcomingCycle(
        rule_id=rule.id,
        owner_id=rule.owner_id,
        next_due=next_due,
        description=rule.payload.description,
        category=rule.payload.category,
    )


def evaluate_missed(
    rule: RecurrenceRule,
    now: datetime,
    tolerance: timedelta = DEFAULT_MISSED_TOLERANCE,
    mode: CycleMode = "fixed",
) -> Optional[MissedCycle]:
    """Flag the rule when its expected occurrence is older than `tolerance`."""
    if not is_active(rule, now):
        return None
    next_expected = expected_next(rule, mode)
    if next_expected is None or next_expected >= now:
        return None
    if now - next_expected <= tolerance:
        return None
    return MissedCycle(
        rule_id=rule.id,
        owner_id=rule.owner_id,
        next_expected=next_expected,
        description=rule.payload.description,
        category=rule.payload.category,
    )


__all__ = [
    "CycleMode",
    "DEFAULT_UPCOMING_HORIZON",
    "DEFAULT_MISSED_TOLERANCE",
    "FIXED_CYCLE_LENGTHS",
    "CALENDAR_STEPS",
    "cycle_length",
    "next_occurrence",
    "is_active",
    "expected_next",
    "evaluate_due",
    "evaluate_upcoming",
    "evaluate_missed",
]
