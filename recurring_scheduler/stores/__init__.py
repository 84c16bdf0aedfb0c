"""
Stores package for the recurring transaction scheduler.

Re-exports the store interfaces and concrete backends, plus `build_store`,
which picks a backend from settings.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from recurring_scheduler.config import Settings, get_settings
from recurring_scheduler.stores.abstract import (
    UNSET,
    AbstractRecurrenceStore,
    InstanceId,
    RecurrenceStore,
)
from recurring_scheduler.stores.memory import InMemoryRecurrenceStore
from recurring_scheduler.stores.postgres import PostgresRecurrenceStore


def _store_factories() -> Dict[str, Callable[[], AbstractRecurrenceStore]]:
    """Registry of available store backends."""
    return {
        "memory": lambda: InMemoryRecurrenceStore(),
        "postgres": lambda: PostgresRecurrenceStore(),
    }


def available_stores() -> List[str]:
    """List available store backend names."""
    return sorted(_store_factories().keys())


def build_store(settings: Optional[Settings] = None) -> AbstractRecurrenceStore:
    settings = settings or get_settings()
    factories = _store_factories()
    if settings.store_backend not in factories:
        raise ValueError(
            f"Unknown store backend '{settings.store_backend}'. Available: {', '.join(factories)}"
        )
    return factories[settings.store_backend]()


__all__ = [
    # Abstracts
    "UNSET",
    "AbstractRecurrenceStore",
    "InstanceId",
    "RecurrenceStore",
    # Concrete stores
    "InMemoryRecurrenceStore",
    "PostgresRecurrenceStore",
    # Factory
    "available_stores",
    "build_store",
]
