"""
PostgreSQL recurrence store backed by a psycopg 3 async connection pool.

- Rules live in `recurrence_rules`, instances in `materialized_instances`.
- `materialize_cycle` locks the rule row (`SELECT ... FOR UPDATE`), checks the
  compare-and-update precondition, inserts the instance and advances
  `last_processed` in one transaction.
- `tick_guard` holds a session advisory lock on a dedicated autocommit
  connection so ticks from separate processes never overlap.
"""

from __future__ import annotations

import contextlib
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_scheduler.config import get_settings
from recurring_scheduler.domain.models import (
    MaterializedInstance,
    PayloadTemplate,
    RecurrenceRule,
    ensure_utc,
)
from recurring_scheduler.errors import (
    RuleNotFoundError,
    StaleRuleError,
    StoreReadError,
    StoreWriteError,
)
from recurring_scheduler.infrastructure.db_factory import (
    configure_connection,
    get_async_connection,
    open_async_pool,
)
from recurring_scheduler.stores.abstract import UNSET, AbstractRecurrenceStore, InstanceId, _Unset
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)

# Arbitrary but stable key for pg_advisory_lock.
TICK_LOCK_KEY = 0x5EC0_4E11

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS recurrence_rules (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL,
    is_recurring    BOOLEAN NOT NULL DEFAULT TRUE,
    frequency       TEXT,
    anchor_date     TIMESTAMPTZ NOT NULL,
    last_processed  TIMESTAMPTZ,
    end_date        TIMESTAMPTZ,
    type            TEXT NOT NULL DEFAULT 'expense',
    amount          NUMERIC(14, 2) NOT NULL,
    currency        TEXT NOT NULL DEFAULT 'USD',
    category        TEXT NOT NULL,
    description     TEXT,
    tags            TEXT[] NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS recurrence_rules_active_idx
    ON recurrence_rules (is_recurring, end_date);

CREATE TABLE IF NOT EXISTS materialized_instances (
    id              BIGSERIAL PRIMARY KEY,
    source_rule_id  TEXT REFERENCES recurrence_rules (id) ON DELETE SET NULL,
    owner_id        TEXT NOT NULL,
    type            TEXT NOT NULL,
    amount          NUMERIC(14, 2) NOT NULL,
    currency        TEXT NOT NULL,
    category        TEXT NOT NULL,
    description     TEXT NOT NULL,
    date            TIMESTAMPTZ NOT NULL,
    tags            TEXT[] NOT NULL DEFAULT '{}',
    is_recurring    BOOLEAN NOT NULL DEFAULT FALSE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

_SELECT_ACTIVE_SQL = """
SELECT id, owner_id, is_recurring, frequency, anchor_date, last_processed, end_date,
       type, amount, currency, category, description, tags
FROM recurrence_rules
WHERE is_recurring AND (end_date IS NULL OR end_date >= %(now)s)
ORDER BY id
"""

_INSERT_INSTANCE_SQL = """
INSERT INTO materialized_instances
    (source_rule_id, owner_id, type, amount, currency, category, description, date, tags,
     is_recurring)
VALUES
    (%(source_rule_id)s, %(owner_id)s, %(type)s, %(amount)s, %(currency)s, %(category)s,
     %(description)s, %(date)s, %(tags)s, FALSE)
RETURNING id
"""

_UPSERT_RULE_SQL = """
INSERT INTO recurrence_rules
    (id, owner_id, is_recurring, frequency, anchor_date, last_processed, end_date,
     type, amount, currency, category, description, tags)
VALUES
    (%(id)s, %(owner_id)s, %(is_recurring)s, %(frequency)s, %(anchor_date)s,
     %(last_processed)s, %(end_date)s, %(type)s, %(amount)s, %(currency)s, %(category)s,
     %(description)s, %(tags)s)
ON CONFLICT (id) DO UPDATE SET
    owner_id = EXCLUDED.owner_id,
    is_recurring = EXCLUDED.is_recurring,
    frequency = EXCLUDED.frequency,
    anchor_date = EXCLUDED.anchor_date,
    last_processed = EXCLUDED.last_processed,
    end_date = EXCLUDED.end_date,
    type = EXCLUDED.type,
    amount = EXCLUDED.amount,
    currency = EXCLUDED.currency,
    category = EXCLUDED.category,
    description = EXCLUDED.description,
    tags = EXCLUDED.tags
"""


def _row_to_rule(row: Dict[str, Any]) -> RecurrenceRule:
    return RecurrenceRule(
        id=row["id"],
        owner_id=row["owner_id"],
        is_recurring=row["is_recurring"],
        frequency=row["frequency"],
        anchor_date=row["anchor_date"],
        last_processed=row["last_processed"],
        end_date=row["end_date"],
        payload=PayloadTemplate(
            type=row["type"],
            amount=row["amount"],
            currency=row["currency"],
            category=row["category"],
            description=row["description"],
            tags=tuple(row["tags"] or ()),
        ),
    )


def _rule_params(rule: RecurrenceRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "owner_id": rule.owner_id,
        "is_recurring": rule.is_recurring,
        "frequency": rule.frequency,
        "anchor_date": rule.anchor_date,
        "last_processed": rule.last_processed,
        "end_date": rule.end_date,
        "type": rule.payload.type,
        "amount": rule.payload.amount,
        "currency": rule.payload.currency,
        "category": rule.payload.category,
        "description": rule.payload.description,
        "tags": list(rule.payload.tags),
    }


def _check_update(
    rule_id: str,
    current: Optional[datetime],
    timestamp: datetime,
    expected_previous: Optional[datetime] | _Unset,
) -> None:
    if not isinstance(expected_previous, _Unset):
        expected = ensure_utc(expected_previous) if expected_previous is not None else None
        if current != expected:
            raise StaleRuleError(
                f"Rule '{rule_id}' last_processed changed (expected {expected}, found {current})",
                rule_id=rule_id,
            )
    if current is not None and ensure_utc(timestamp) < current:
        raise StoreWriteError(
            f"Refusing to move last_processed of '{rule_id}' backwards", rule_id=rule_id
        )


class PostgresRecurrenceStore(AbstractRecurrenceStore):
    """
    Recurrence store on PostgreSQL.

    By default the process-wide pool from `PoolManager` is used; passing
    `dsn_override` gives the store a private pool (handy for tests).
    `close` only shuts a private pool. The shared pool stays open for other
    stores and is closed by whoever owns the process, via
    `PoolManager().close_all()`.
    """

    name: str = "postgres"

    def __init__(
        self,
        dsn_override: Optional[str] = None,
        pool_min_size: Optional[int] = None,
        pool_max_size: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.pool_min_size = pool_min_size or settings.pool_min_size
        self.pool_max_size = pool_max_size or settings.pool_max_size
        self._dsn_override = dsn_override
        self._pool_instance: Optional[AsyncConnectionPool] = None
        self._owns_pool = False

    async def _get_pool(self) -> AsyncConnectionPool:
        if self._pool_instance is not None:
            return self._pool_instance
        if self._dsn_override:
            self._pool_instance = AsyncConnectionPool(
                conninfo=self._dsn_override,
                min_size=self.pool_min_size,
                max_size=self.pool_max_size,
                configure=configure_connection,
                open=False,
            )
            await self._pool_instance.open(wait=True)
            self._owns_pool = True
        else:
            self._pool_instance = await open_async_pool(
                min_size=self.pool_min_size, max_size=self.pool_max_size
            )
        return self._pool_instance

    async def close(self) -> None:
        pool, self._pool_instance = self._pool_instance, None
        if pool is None:
            return
        if self._owns_pool:
            await pool.close()
        self._owns_pool = False

    # ------------------------------------------------------------------
    # Schema / seeding helpers
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            await conn.execute(SCHEMA_SQL)
        log.info("Schema ensured", extra={"store": self.name})

    async def upsert_rule(self, rule: RecurrenceRule) -> None:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            await conn.execute(_UPSERT_RULE_SQL, _rule_params(rule))

    async def get_rule(self, rule_id: str) -> Optional[RecurrenceRule]:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "SELECT * FROM recurrence_rules WHERE id = %s", (rule_id,)
                )
                row = await cur.fetchone()
        return _row_to_rule(row) if row else None

    async def count_instances(self, rule_id: Optional[str] = None) -> int:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                if rule_id is None:
                    await cur.execute("SELECT COUNT(*) FROM materialized_instances")
                else:
                    await cur.execute(
                        "SELECT COUNT(*) FROM materialized_instances WHERE source_rule_id = %s",
                        (rule_id,),
                    )
                (count,) = await cur.fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # RecurrenceStore
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
        reraise=True,
    )
    async def _fetch_active(self, now: datetime) -> Sequence[Dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(_SELECT_ACTIVE_SQL, {"now": ensure_utc(now)})
                return await cur.fetchall()

    async def list_active_recurring_rules(self, now: datetime) -> Sequence[RecurrenceRule]:
        try:
            rows = await self._fetch_active(now)
        except psycopg.Error as exc:
            raise StoreReadError(f"Failed to list recurring rules: {exc}") from exc
        return [_row_to_rule(row) for row in rows]

    async def insert_materialized_instance(self, instance: MaterializedInstance) -> InstanceId:
        try:
            pool = await self._get_pool()
            async with pool.connection() as conn:
                return await self._insert(conn, instance)
        except psycopg.Error as exc:
            raise StoreWriteError(
                f"Failed to insert instance: {exc}", rule_id=instance.source_rule_id
            ) from exc

    async def update_last_processed(
        self,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> None:
        try:
            pool = await self._get_pool()
            async with pool.connection() as conn:
                async with conn.transaction():
                    current = await self._lock_rule(conn, rule_id)
                    _check_update(rule_id, current, timestamp, expected_previous)
                    await self._advance(conn, rule_id, timestamp)
        except psycopg.Error as exc:
            raise StoreWriteError(
                f"Failed to update rule '{rule_id}': {exc}", rule_id=rule_id
            ) from exc

    async def materialize_cycle(
        self,
        instance: MaterializedInstance,
        rule_id: str,
        timestamp: datetime,
        expected_previous: Optional[datetime] | _Unset = UNSET,
    ) -> InstanceId:
        try:
            pool = await self._get_pool()
            async with pool.connection() as conn:
                async with conn.transaction():
                    current = await self._lock_rule(conn, rule_id)
                    _check_update(rule_id, current, timestamp, expected_previous)
                    instance_id = await self._insert(conn, instance)
                    await self._advance(conn, rule_id, timestamp)
                    return instance_id
        except psycopg.Error as exc:
            raise StoreWriteError(
                f"Failed to materialize cycle for '{rule_id}': {exc}", rule_id=rule_id
            ) from exc

    @contextlib.asynccontextmanager
    async def tick_guard(self) -> AsyncIterator[None]:
        conn = await get_async_connection(self._dsn_override, autocommit=True)
        try:
            await conn.execute("SELECT pg_advisory_lock(%s)", (TICK_LOCK_KEY,))
            try:
                yield
            finally:
                await conn.execute("SELECT pg_advisory_unlock(%s)", (TICK_LOCK_KEY,))
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _lock_rule(conn: AsyncConnection, rule_id: str) -> Optional[datetime]:
        async with conn.cursor() as cur:
            await cur.execute(
                "SELECT last_processed FROM recurrence_rules WHERE id = %s FOR UPDATE",
                (rule_id,),
            )
            row = await cur.fetchone()
        if row is None:
            raise RuleNotFoundError(f"Rule '{rule_id}' does not exist", rule_id=rule_id)
        return row[0]

    @staticmethod
    async def _advance(conn: AsyncConnection, rule_id: str, timestamp: datetime) -> None:
        await conn.execute(
            "UPDATE recurrence_rules SET last_processed = %s WHERE id = %s",
            (ensure_utc(timestamp), rule_id),
        )

    @staticmethod
    async def _insert(conn: AsyncConnection, instance: MaterializedInstance) -> InstanceId:
        params = instance.model_dump(exclude={"is_recurring"})
        params["tags"] = list(instance.tags)
        async with conn.cursor() as cur:
            await cur.execute(_INSERT_INSTANCE_SQL, params)
            (instance_id,) = await cur.fetchone()
        return str(instance_id)


__all__ = ["PostgresRecurrenceStore", "SCHEMA_SQL", "TICK_LOCK_KEY"]
