"""
Processors package: the three per-tick scheduling procedures.
"""

from recurring_scheduler.processors.due import DueCycleProcessor
from recurring_scheduler.processors.missed import MissedCycleDetector
from recurring_scheduler.processors.projection import CycleProjection
from recurring_scheduler.processors.upcoming import UpcomingCycleNotifier

__all__ = [
    "CycleProjection",
    "DueCycleProcessor",
    "MissedCycleDetector",
    "UpcomingCycleNotifier",
]
