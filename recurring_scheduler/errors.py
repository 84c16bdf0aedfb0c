"""
Exception hierarchy for the recurring transaction scheduler.

Only `StoreReadError` is fatal for a tick. Write errors are caught per rule by
the due-cycle processor and folded into the processing report.
"""

from __future__ import annotations

from typing import Optional


class SchedulerError(Exception):
    """Base exception for scheduler-specific errors."""


class StoreError(SchedulerError):
    """Base exception for recurrence store failures."""


class StoreReadError(StoreError):
    """Enumerating recurrence rules failed; the whole tick is aborted."""


class StoreWriteError(StoreError):
    """Persisting an instance or a rule update failed for a single rule."""

    def __init__(self, message: str, rule_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.rule_id = rule_id


class RuleNotFoundError(StoreWriteError):
    """The rule disappeared between the snapshot read and the update."""


class StaleRuleError(StoreWriteError):
    """Compare-and-update lost: `last_processed` changed since the snapshot."""


__all__ = [
    "SchedulerError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "RuleNotFoundError",
    "StaleRuleError",
]
