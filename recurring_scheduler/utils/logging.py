"""
Logging setup for scheduler ticks.

Every tick logs under phase markers so one run can be followed in order:
`[TICK START]`, then `[DUE]`, `[UPCOMING]` and `[MISSED]` per phase (with a
debug-level `[TICK] <phase>` at each transition), then `[TICK COMPLETE]` or
`[TICK ABORTED]`. The long-running loop logs under `[SERVE]`. Facts about a rule or a tick travel as
`extra=` fields rather than inside the message text:

    rule_id, owner_id, instance_id   which rule/instance a line is about
    now, next_due, next_expected     the tick's reference time and cycle dates
    materialized, failed             per-tick outcome counts
    duration_seconds                 wall time of a phase or a whole tick

The console formatter appends those fields as `key=value` pairs; the JSON
formatter promotes them to top-level keys so a log shipper can index them.

Usage:
    from recurring_scheduler.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("[DUE] Materialized cycle", extra={"rule_id": "r-1", "instance_id": "i-9"})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_RECORD_ATTRS and key != "extra"
    }
    # Older call sites pass a nested `extra={"extra": {...}}` dict.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a tick log record as one JSON line."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    payload.update(_extra_fields(record))
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


class ConsoleFormatter(logging.Formatter):
    """Human formatter that keeps `rule_id` and friends visible."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        fields = _extra_fields(record)
        if not fields:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} | {pairs}{sep}{tail}"


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Install one stderr handler on the root logger.

    `json_logs` picks `JsonFormatter` over `ConsoleFormatter`. With
    `force=False` an already configured root logger is left untouched, so a
    host application keeps its own handlers.
    """
    if not force and logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "()": ConsoleFormatter,
                    "fmt": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "ConsoleFormatter", "JsonFormatter"]
