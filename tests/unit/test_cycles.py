from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from recurring_scheduler.domain.cycles import (
    cycle_length,
    evaluate_due,
    evaluate_missed,
    evaluate_upcoming,
    is_active,
    next_occurrence,
)
from recurring_scheduler.domain.models import Frequency

T = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


@pytest.mark.parametrize(
    ("frequency", "hours"),
    [
        (Frequency.DAILY, 24),
        (Frequency.WEEKLY, 7 * 24),
        (Frequency.MONTHLY, 30 * 24),
        (Frequency.YEARLY, 365 * 24),
    ],
)
def test_fixed_cycle_lengths(frequency: Frequency, hours: int) -> None:
    assert cycle_length(frequency) == timedelta(hours=hours)


def test_frequency_parse_is_exact() -> None:
    assert Frequency.parse("weekly") is Frequency.WEEKLY
    assert Frequency.parse("Weekly") is None
    assert Frequency.parse(" monthly ") is None
    assert Frequency.parse("fortnightly") is None
    assert Frequency.parse(None) is None


def test_yearly_fixed_cycle_ignores_leap_day() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert next_occurrence(start, Frequency.YEARLY) == datetime(2024, 12, 31, tzinfo=timezone.utc)
    assert next_occurrence(start, Frequency.YEARLY, mode="calendar") == datetime(
        2025, 1, 1, tzinfo=timezone.utc
    )


def test_calendar_month_clamps_to_month_end(make_rule) -> None:
    jan_31 = datetime(2024, 1, 31, tzinfo=timezone.utc)
    feb_29 = datetime(2024, 2, 29, tzinfo=timezone.utc)
    rule = make_rule(frequency="monthly", anchor_date=jan_31)

    assert next_occurrence(jan_31, Frequency.MONTHLY, mode="calendar") == feb_29
    assert evaluate_due(rule, feb_29, mode="calendar") is True
    # Fixed mode needs the full 30 days: Jan 31 + 30d = Mar 1.
    assert evaluate_due(rule, feb_29) is False
    assert evaluate_due(rule, datetime(2024, 3, 1, tzinfo=timezone.utc)) is True


def test_due_boundary_is_inclusive(make_rule) -> None:
    rule = make_rule(last_processed=T)
    assert evaluate_due(rule, T + 23 * HOUR) is False
    assert evaluate_due(rule, T + 24 * HOUR) is True
    assert evaluate_due(rule, T + 240 * HOUR) is True


def test_anchor_date_is_reference_when_never_processed(make_rule) -> None:
    rule = make_rule(frequency="weekly", anchor_date=T)
    assert rule.reference_time == T
    assert evaluate_due(rule, T + timedelta(days=7)) is True
    assert evaluate_due(rule, T + timedelta(days=6, hours=23)) is False


def test_inert_rules_are_never_active(make_rule) -> None:
    assert is_active(make_rule(is_recurring=False), T) is False
    assert is_active(make_rule(frequency=None), T) is False
    assert is_active(make_rule(frequency="hourly"), T) is False
    assert is_active(make_rule(frequency="Weekly"), T) is False
    assert is_active(make_rule(end_date=T - HOUR), T) is False
    assert is_active(make_rule(end_date=T), T) is True
    assert is_active(make_rule(end_date=T + HOUR), T) is True


def test_upcoming_window_is_inclusive_on_both_ends(make_rule) -> None:
    horizon = timedelta(days=3)
    at_now = make_rule(last_processed=T - 24 * HOUR)
    at_edge = make_rule(frequency="weekly", last_processed=T - timedelta(days=4))
    past_edge = make_rule(frequency="weekly", last_processed=T - timedelta(days=4) + HOUR)

    assert evaluate_upcoming(at_now, T, horizon).next_due == T
    assert evaluate_upcoming(at_edge, T, horizon).next_due == T + horizon
    assert evaluate_upcoming(past_edge, T, horizon) is None


def test_overdue_rule_is_not_upcoming(make_rule) -> None:
    rule = make_rule(last_processed=T - 25 * HOUR)
    assert evaluate_upcoming(rule, T) is None


def test_upcoming_carries_payload_labels(make_rule) -> None:
    rule = make_rule(last_processed=T - 12 * HOUR, description=None, category="rent")
    cycle = evaluate_upcoming(rule, T)
    assert cycle is not None
    assert cycle.rule_id == rule.id
    assert cycle.owner_id == rule.owner_id
    assert cycle.next_due == T + 12 * HOUR
    assert cycle.label == "rent"


def test_missed_tolerance_boundary(make_rule) -> None:
    # next_expected = T - 23h -> within tolerance
    within = make_rule(last_processed=T - 47 * HOUR)
    # next_expected = T - 25h -> missed
    beyond = make_rule(last_processed=T - 49 * HOUR)
    # next_expected = T - 24h exactly -> not strictly beyond tolerance
    exact = make_rule(last_processed=T - 48 * HOUR)

    assert evaluate_missed(within, T) is None
    assert evaluate_missed(exact, T) is None
    missed = evaluate_missed(beyond, T)
    assert missed is not None
    assert missed.next_expected == T - 25 * HOUR


def test_missed_honours_custom_tolerance(make_rule) -> None:
    rule = make_rule(last_processed=T - 26 * HOUR)
    assert evaluate_missed(rule, T, tolerance=timedelta(0)) is not None
    assert evaluate_missed(rule, T, tolerance=timedelta(hours=2)) is None


@pytest.mark.parametrize("offset_hours", [0, 1, 12, 23, 24, 25, 47, 48, 49, 100])
def test_upcoming_and_missed_never_overlap(make_rule, offset_hours: int) -> None:
    rule = make_rule(last_processed=T - offset_hours * HOUR)
    upcoming = evaluate_upcoming(rule, T, timedelta(days=3))
    missed = evaluate_missed(rule, T, timedelta(hours=24))
    assert upcoming is None or missed is None


def test_ended_rule_excluded_everywhere(make_rule) -> None:
    rule = make_rule(last_processed=T - 100 * HOUR, end_date=T - HOUR)
    assert evaluate_due(rule, T) is False
    assert evaluate_upcoming(rule, T) is None
    assert evaluate_missed(rule, T) is None
