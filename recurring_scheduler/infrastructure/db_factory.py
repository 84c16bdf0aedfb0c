"""
Database connection factory utilities for the recurring transaction scheduler.

Provides centralized management of the async PostgreSQL pool used by the
Postgres recurrence store, plus dedicated connections for session-scoped work
(advisory locks). The PoolManager singleton keeps one pool per process.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import threading
from typing import Optional

import psycopg
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_scheduler.config import get_settings
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


async def apply_statement_timeout(conn: AsyncConnection, timeout_ms: int) -> None:
    """Set a session statement timeout; 0 disables it."""
    await conn.execute(f"SET statement_timeout = {int(timeout_ms)}")
    await conn.commit()


async def configure_connection(conn: AsyncConnection) -> None:
    await apply_statement_timeout(conn, get_settings().db_statement_timeout_ms)


class PoolManager:
    """
    Thread-safe singleton for managing the async connection pool.

    The pool is created closed and opened by the first caller that awaits
    `open_async_pool`.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._async_pool: Optional[AsyncConnectionPool] = None
            return cls._instance

    def get_async_pool(
        self,
        min_size: int = 1,
        max_size: int = 10,
        dsn_override: Optional[str] = None,
    ) -> AsyncConnectionPool:
        """
        Get or create the asynchronous connection pool.

        Parameters
        ----------
        min_size : int
            Minimum number of idle connections to keep.
        max_size : int
            Maximum total connections in the pool.
        dsn_override : str, optional
            Connection string to use instead of the one built from settings.

        Returns
        -------
        AsyncConnectionPool
            The managed async pool instance (not yet opened).
        """
        with self._lock:
            if self._async_pool is None:
                self._async_pool = AsyncConnectionPool(
                    conninfo=dsn_override or build_dsn(),
                    min_size=min_size,
                    max_size=max_size,
                    configure=configure_connection,
                    open=False,
                )
            return self._async_pool

    async def close_all(self) -> None:
        """Close the managed pool and release resources."""
        with self._lock:
            pool, self._async_pool = self._async_pool, None
        if pool is not None:
            await pool.close()
            log.debug("Async pool closed")


async def open_async_pool(
    min_size: int = 1,
    max_size: int = 10,
    dsn_override: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Get the managed async pool via PoolManager and make sure it is open.
    """
    pool = PoolManager().get_async_pool(
        min_size=min_size, max_size=max_size, dsn_override=dsn_override
    )
    if pool.closed:
        await pool.open(wait=True)
        log.info("Async pool opened", extra={"min_size": min_size, "max_size": max_size})
    return pool


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
async def get_async_connection(
    dsn_override: Optional[str] = None, autocommit: bool = False
) -> AsyncConnection:
    """
    Acquire a dedicated asynchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Use this for session-scoped work that must not go back to the pool.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return await AsyncConnection.connect(dsn_override or build_dsn(), autocommit=autocommit)


__all__ = [
    "PoolManager",
    "build_dsn",
    "apply_statement_timeout",
    "open_async_pool",
    "get_async_connection",
]
