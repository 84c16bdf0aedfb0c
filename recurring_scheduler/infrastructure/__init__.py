"""
Infrastructure package for the recurring transaction scheduler.

Centralizes database connectivity concerns (async pool, dedicated connections).
Keep this layer focused on I/O and resource management, decoupled from
scheduling logic.
"""

from recurring_scheduler.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_async_connection,
    open_async_pool,
)

__all__ = [
    "PoolManager",
    "build_dsn",
    "get_async_connection",
    "open_async_pool",
]
