"""
Utilities package for the recurring transaction scheduler.

Exports shared helpers for logging, tick timing, and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from recurring_scheduler.utils.logging import configure_logging, get_logger
from recurring_scheduler.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
