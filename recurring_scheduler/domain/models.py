"""
Domain models for the recurring transaction scheduler.

Defines the recurrence rule the scheduler evaluates, the concrete transaction
instance it materializes, and the projections it emits for upcoming and missed
cycles. All timestamps are timezone-aware; naive values are read as UTC.
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

RECURRING_MARKER = "(Recurring)"
RECURRING_PLACEHOLDER = "(Recurring Transaction)"


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Frequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Frequency"]:
        """Return the exactly matching frequency, or None for missing/unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class PayloadTemplate(BaseModel):
    """
    Transaction fields copied into every materialized instance.
    """

    type: Literal["income", "expense"] = Field("expense", description="Transaction direction.")
    amount: Decimal = Field(..., description="Amount per cycle.")
    currency: str = Field("USD", description="ISO currency code.")
    category: str = Field(..., description="Category label.")
    description: Optional[str] = Field(None, description="Free-text description.")
    tags: Tuple[str, ...] = Field(default=(), description="Free-form tags.")

    model_config = {"frozen": True}


class RecurrenceRule(BaseModel):
    """
    A recurring transaction template plus its processing state.

    `frequency` is kept as the raw stored value: an unknown or missing value
    makes the rule inert rather than failing validation.
    """

    id: str = Field(..., description="Store-assigned rule identifier.")
    owner_id: str = Field(..., description="Opaque identifier of the owning account.")
    is_recurring: bool = Field(True, description="Only recurring rules are scheduled.")
    frequency: Optional[str] = Field(None, description="daily | weekly | monthly | yearly.")
    anchor_date: datetime = Field(..., description="Cycle origin when never processed.")
    last_processed: Optional[datetime] = Field(None, description="Last materialization time.")
    end_date: Optional[datetime] = Field(None, description="After this the rule is inert.")
    payload: PayloadTemplate

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("anchor_date", "last_processed", "end_date")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @property
    def cycle_frequency(self) -> Optional[Frequency]:
        return Frequency.parse(self.frequency)

    @property
    def reference_time(self) -> datetime:
        """`last_processed`, or `anchor_date` if the rule never fired."""
        return self.last_processed if self.last_processed is not None else self.anchor_date

    def with_last_processed(self, timestamp: datetime) -> "RecurrenceRule":
        return self.model_copy(update={"last_processed": ensure_utc(timestamp)})


class MaterializedInstance(BaseModel):
    """
    A concrete, non-recurring transaction created from a due cycle.
    """

    owner_id: str
    source_rule_id: str
    type: Literal["income", "expense"]
    amount: Decimal
    currency: str
    category: str
    description: str
    date: datetime
    tags: Tuple[str, ...] = ()
    is_recurring: Literal[False] = False

    model_config = {"frozen": True}

    @classmethod
    def from_rule(cls, rule: RecurrenceRule, now: datetime) -> "MaterializedInstance":
        template = rule.payload
        description = (
            f"{template.description} {RECURRING_MARKER}"
            if template.description
            else RECURRING_PLACEHOLDER
        )
        return cls(
            owner_id=rule.owner_id,
            source_rule_id=rule.id,
            type=template.type,
            amount=template.amount,
            currency=template.currency,
            category=template.category,
            description=description,
            date=ensure_utc(now),
            tags=template.tags,
        )


class UpcomingCycle(BaseModel):
    rule_id: str
    owner_id: str
    next_due: datetime
    description: Optional[str] = None
    category: str

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return self.description or self.category


class MissedCycle(BaseModel):
    rule_id: str
    owner_id: str
    next_expected: datetime
    description: Optional[str] = None
    category: str

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return self.description or self.category


__all__ = [
    "RECURRING_MARKER",
    "RECURRING_PLACEHOLDER",
    "ensure_utc",
    "Frequency",
    "PayloadTemplate",
    "RecurrenceRule",
    "MaterializedInstance",
    "UpcomingCycle",
    "MissedCycle",
]
