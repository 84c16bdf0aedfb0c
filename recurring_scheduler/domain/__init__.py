"""
Domain package for the recurring transaction scheduler.

Exports the core models, the pure cycle arithmetic and the report contracts.
Keep this package free of I/O: nothing here touches a store or the wall clock.
"""

from recurring_scheduler.domain.cycles import (
    CycleMode,
    cycle_length,
    evaluate_due,
    evaluate_missed,
    evaluate_upcoming,
    is_active,
    next_occurrence,
)
from recurring_scheduler.domain.models import (
    Frequency,
    MaterializedInstance,
    MissedCycle,
    PayloadTemplate,
    RecurrenceRule,
    UpcomingCycle,
)
from recurring_scheduler.domain.reports import ProcessingReport, RuleFailure, TickReport

__all__ = [
    "CycleMode",
    "cycle_length",
    "evaluate_due",
    "evaluate_missed",
    "evaluate_upcoming",
    "is_active",
    "next_occurrence",
    "Frequency",
    "MaterializedInstance",
    "MissedCycle",
    "PayloadTemplate",
    "RecurrenceRule",
    "UpcomingCycle",
    "ProcessingReport",
    "RuleFailure",
    "TickReport",
]
