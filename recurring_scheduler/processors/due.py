"""
Due-cycle processing: decide which rules are due and materialize them.

The pass is split into a pure decision phase (`evaluate_due` over the snapshot)
and an apply phase that writes through the store. Each due rule yields exactly
one instance per pass, however many cycles elapsed; missed cycles are reported
by the missed-cycle detector, never replayed here.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from recurring_scheduler.domain.cycles import CycleMode, evaluate_due, is_active
from recurring_scheduler.domain.models import MaterializedInstance, RecurrenceRule, ensure_utc
from recurring_scheduler.domain.reports import ProcessingReport, RuleFailure
from recurring_scheduler.errors import StoreWriteError
from recurring_scheduler.stores.abstract import InstanceId, RecurrenceStore
from recurring_scheduler.utils.logging import get_logger

log = get_logger(__name__)

_Outcome = Tuple[RecurrenceRule, Optional[InstanceId], Optional[RuleFailure]]


class DueCycleProcessor:
    """
    Materialize one instance for every due rule and advance `last_processed`.

    Parameters
    ----------
    store : RecurrenceStore
        Where rules are read from and instances/updates are written to.
    mode : CycleMode
        ``"fixed"`` (default) or ``"calendar"`` cycle arithmetic.
    max_concurrency : int
        How many rules may be written in parallel. Each write is a
        compare-and-update keyed on the rule's snapshot `last_processed`, so a
        concurrent writer makes the rule fail with `StaleRuleError` instead of
        producing a duplicate instance.
    """

    name: str = "due"

    def __init__(
        self,
        store: RecurrenceStore,
        mode: CycleMode = "fixed",
        max_concurrency: int = 1,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.store = store
        self.mode = mode
        self.max_concurrency = max_concurrency

    def select_due(self, rules: Sequence[RecurrenceRule], now: datetime) -> List[RecurrenceRule]:
        """Pure decision phase: the subset of `rules` that is due at `now`."""
        return [rule for rule in rules if evaluate_due(rule, now, self.mode)]

    async def process(
        self, now: datetime, rules: Optional[Sequence[RecurrenceRule]] = None
    ) -> ProcessingReport:
        """
        Run one due-cycle pass.

        Parameters
        ----------
        now : datetime
            Logical time of the pass. Never read from the wall clock here.
        rules : sequence of RecurrenceRule, optional
            Snapshot to evaluate. When omitted the store is queried; a
            `StoreReadError` from that query propagates.

        Returns
        -------
        ProcessingReport
            Counts, created instance ids, per-rule failures and the
            post-processing snapshot.
        """
        now = ensure_utc(now)
        if rules is None:
            rules = await self.store.list_active_recurring_rules(now)

        active = [rule for rule in rules if is_active(rule, now)]
        skipped = len(rules) - len(active)
        if skipped:
            log.debug("[DUE] Skipped inert rules", extra={"skipped": skipped})

        due_rules = self.select_due(active, now)
        outcomes = await self._apply(due_rules, now)

        report = ProcessingReport(now=now, evaluated=len(active))
        advanced: Dict[str, RecurrenceRule] = {}
        for rule, instance_id, failure in outcomes:
            if failure is not None:
                report.failures.append(failure)
                continue
            report.materialized += 1
            report.materialized_rule_ids.append(rule.id)
            report.instance_ids.append(str(instance_id))
            advanced[rule.id] = rule.with_last_processed(now)

        report.snapshot = [advanced.get(rule.id, rule) for rule in rules]

        log.info(
            f"[DUE] Processed {report.materialized} recurring transactions",
            extra={
                "evaluated": report.evaluated,
                "materialized": report.materialized,
                "failed": len(report.failures),
                "now": now.isoformat(),
            },
        )
        return report

    async def _apply(self, due_rules: Sequence[RecurrenceRule], now: datetime) -> List[_Outcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(rule: RecurrenceRule) -> _Outcome:
            async with semaphore:
                return await self._materialize(rule, now)

        return list(await asyncio.gather(*(_bounded(rule) for rule in due_rules)))

    async def _materialize(self, rule: RecurrenceRule, now: datetime) -> _Outcome:
        instance = MaterializedInstance.from_rule(rule, now)
        try:
            instance_id = await self.store.materialize_cycle(
                instance, rule.id, now, expected_previous=rule.last_processed
            )
        except StoreWriteError as exc:
            log.warning(
                f"[DUE] Failed to materialize rule {rule.id}",
                extra={"rule_id": rule.id, "error": str(exc), "error_type": type(exc).__name__},
            )
            return rule, None, RuleFailure(
                rule_id=rule.id, error=str(exc), error_type=type(exc).__name__
            )
        except Exception as exc:  # noqa: BLE001 - one bad rule must not abort the pass
            log.exception(f"[DUE] Unexpected error for rule {rule.id}", extra={"rule_id": rule.id})
            return rule, None, RuleFailure(
                rule_id=rule.id, error=str(exc), error_type=type(exc).__name__
            )

        log.info(
            f"[DUE] Materialized rule {rule.id}",
            extra={
                "rule_id": rule.id,
                "owner_id": rule.owner_id,
                "instance_id": instance_id,
                "reference": rule.reference_time.isoformat(),
                "date": now.isoformat(),
            },
        )
        return rule, instance_id, None


__all__ = ["DueCycleProcessor"]
