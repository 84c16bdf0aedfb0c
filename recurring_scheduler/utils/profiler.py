"""
Tick timing utilities for the recurring transaction scheduler.

Measures wall-clock duration (perf_counter) and resident memory (psutil) around
a block of scheduler work, so each tick report can carry how long it took.

Usage:
    from recurring_scheduler.utils.profiler import profile_block

    with profile_block("tick") as stats:
        ...

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager to time a block of code.

    RSS is sampled at entry and exit and the larger value is kept. Ticks are
    I/O bound, so a background sampling thread would only add noise.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    rss_before = process.memory_info().rss

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        stats.peak_rss_bytes = max(rss_before, process.memory_info().rss)


__all__ = ["ProfileStats", "profile_block"]
