"""
Recurring Scheduler - due/upcoming/missed evaluation for recurring transactions.

Given recurrence rules attached to financial transactions, this package:

- Materializes exactly one concrete transaction per due cycle
- Predicts cycles that become due within a look-ahead horizon
- Flags cycles that were missed beyond a grace tolerance
- Orchestrates the three as a serialized, stateless tick

Time is always injected; nothing in the scheduling core reads the wall clock.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from recurring_scheduler.config import Settings, get_settings
from recurring_scheduler.domain import (
    Frequency,
    MaterializedInstance,
    MissedCycle,
    PayloadTemplate,
    ProcessingReport,
    RecurrenceRule,
    RuleFailure,
    TickReport,
    UpcomingCycle,
)
from recurring_scheduler.errors import (
    RuleNotFoundError,
    SchedulerError,
    StaleRuleError,
    StoreError,
    StoreReadError,
    StoreWriteError,
)
from recurring_scheduler.processors import (
    DueCycleProcessor,
    MissedCycleDetector,
    UpcomingCycleNotifier,
)
from recurring_scheduler.runner import SchedulerRunner
from recurring_scheduler.stores import (
    AbstractRecurrenceStore,
    InMemoryRecurrenceStore,
    PostgresRecurrenceStore,
    RecurrenceStore,
)
from recurring_scheduler.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "Frequency",
    "MaterializedInstance",
    "MissedCycle",
    "PayloadTemplate",
    "ProcessingReport",
    "RecurrenceRule",
    "RuleFailure",
    "TickReport",
    "UpcomingCycle",
    # Errors
    "SchedulerError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "RuleNotFoundError",
    "StaleRuleError",
    # Procedures
    "DueCycleProcessor",
    "UpcomingCycleNotifier",
    "MissedCycleDetector",
    "SchedulerRunner",
    # Stores
    "RecurrenceStore",
    "AbstractRecurrenceStore",
    "InMemoryRecurrenceStore",
    "PostgresRecurrenceStore",
    # Logging
    "configure_logging",
    "get_logger",
]
