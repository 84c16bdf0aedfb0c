"""
Pytest configuration for the recurring transaction scheduler.

Provides fixtures for:
- Rule construction with sensible defaults
- In-memory store setup
- Settings cache isolation
- Postgres connectivity for integration tests
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

import psycopg
import pytest

from recurring_scheduler.config import Settings, get_settings
from recurring_scheduler.domain.models import PayloadTemplate, RecurrenceRule
from recurring_scheduler.stores.memory import InMemoryRecurrenceStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


RuleFactory = Callable[..., RecurrenceRule]


@pytest.fixture
def make_rule() -> RuleFactory:
    """
    Build a RecurrenceRule; keyword arguments override the defaults.

    `description`, `category` and `amount` go into the payload template.
    """
    counter = {"n": 0}

    def _make(
        rule_id: Optional[str] = None,
        *,
        frequency: Optional[str] = "daily",
        anchor_date: datetime = T0,
        last_processed: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        is_recurring: bool = True,
        owner_id: str = "owner-1",
        description: Optional[str] = "Gym membership",
        category: str = "health",
        amount: str = "49.99",
    ) -> RecurrenceRule:
        counter["n"] += 1
        return RecurrenceRule(
            id=rule_id or f"rule-{counter['n']}",
            owner_id=owner_id,
            is_recurring=is_recurring,
            frequency=frequency,
            anchor_date=anchor_date,
            last_processed=last_processed,
            end_date=end_date,
            payload=PayloadTemplate(
                type="expense",
                amount=Decimal(amount),
                currency="USD",
                category=category,
                description=description,
                tags=("auto",),
            ),
        )

    return _make


@pytest.fixture
def memory_store() -> InMemoryRecurrenceStore:
    return InMemoryRecurrenceStore()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "recurring_scheduler"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture
def clean_tables(test_dsn: str, db_connection_available: bool):
    """
    Create the schema if needed and empty both tables around each test.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    from recurring_scheduler.stores.postgres import SCHEMA_SQL

    truncate = "TRUNCATE TABLE materialized_instances, recurrence_rules RESTART IDENTITY CASCADE;"
    with psycopg.connect(test_dsn) as conn:
        conn.execute(SCHEMA_SQL)
        conn.execute(truncate)
        conn.commit()
    yield
    with psycopg.connect(test_dsn) as conn:
        conn.execute(truncate)
        conn.commit()
