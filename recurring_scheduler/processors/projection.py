"""
Lazy, restartable projections over a rule snapshot.
"""

from __future__ import annotations

from typing import Callable, Generic, Iterator, Optional, Sequence, TypeVar

from recurring_scheduler.domain.models import RecurrenceRule

T = TypeVar("T")


class CycleProjection(Generic[T]):
    """
    Iterable view that evaluates `evaluate(rule)` for each rule on demand.

    Every iteration starts a fresh pass over the same snapshot, so the view can
    be consumed any number of times without touching the store again.
    """

    def __init__(
        self,
        rules: Sequence[RecurrenceRule],
        evaluate: Callable[[RecurrenceRule], Optional[T]],
    ) -> None:
        self._rules = tuple(rules)
        self._evaluate = evaluate

    def __iter__(self) -> Iterator[T]:
        for rule in self._rules:
            result = self._evaluate(rule)
            if result is not None:
                yield result

    @property
    def rule_count(self) -> int:
        return len(self._rules)


__all__ = ["CycleProjection"]
