"""
Report contracts returned by the scheduler procedures.

Reports are plain pydantic models so the CLI and any host process can dump
them to JSON without extra glue.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from recurring_scheduler.domain.models import MissedCycle, RecurrenceRule, UpcomingCycle


class RuleFailure(BaseModel):
    """A per-rule write failure collected instead of raised."""

    rule_id: str
    error: str
    error_type: str


class ProcessingReport(BaseModel):
    """
    Outcome of one due-cycle pass.

    `snapshot` holds the rules as they stand after the pass (with
    `last_processed` advanced for materialized rules) so later phases of the
    same tick can evaluate against post-processing state. It is not serialized.
    """

    now: datetime
    evaluated: int = 0
    materialized: int = 0
    materialized_rule_ids: List[str] = Field(default_factory=list)
    instance_ids: List[str] = Field(default_factory=list)
    failures: List[RuleFailure] = Field(default_factory=list)
    snapshot: List[RecurrenceRule] = Field(default_factory=list, exclude=True)

    @property
    def failed_rule_ids(self) -> List[str]:
        return [failure.rule_id for failure in self.failures]


class TickReport(BaseModel):
    """Aggregated outcome of one scheduler tick."""

    now: datetime
    due: ProcessingReport
    upcoming: List[UpcomingCycle] = Field(default_factory=list)
    missed: List[MissedCycle] = Field(default_factory=list)
    duration_seconds: float = 0.0
    peak_rss_bytes: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.due.failures


__all__ = ["RuleFailure", "ProcessingReport", "TickReport"]
