"""
Configuration settings for the recurring transaction scheduler.

Uses Pydantic Settings to load environment variables for the store backend,
database connectivity, logging, and scheduling windows (upcoming horizon,
missed-cycle tolerance, cycle arithmetic mode).
"""
from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("recurring_scheduler", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(30_000, ge=0, alias="DB_STATEMENT_TIMEOUT_MS")
    pool_min_size: int = Field(1, ge=1, alias="DB_POOL_MIN_SIZE")
    pool_max_size: int = Field(10, ge=1, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")
    store_backend: Literal["memory", "postgres"] = Field("memory", alias="STORE_BACKEND")

    # Scheduling
    upcoming_horizon_hours: float = Field(72.0, gt=0, alias="UPCOMING_HORIZON_HOURS")
    missed_tolerance_hours: float = Field(24.0, ge=0, alias="MISSED_TOLERANCE_HOURS")
    cycle_mode: Literal["fixed", "calendar"] = Field("fixed", alias="CYCLE_MODE")
    max_concurrency: int = Field(1, ge=1, alias="SCHEDULER_MAX_CONCURRENCY")
    tick_interval_seconds: int = Field(3600, gt=0, alias="TICK_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def upcoming_horizon(self) -> timedelta:
        return timedelta(hours=self.upcoming_horizon_hours)

    @property
    def missed_tolerance(self) -> timedelta:
        return timedelta(hours=self.missed_tolerance_hours)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
