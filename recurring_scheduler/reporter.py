from __future__ import annotations

from typing import Iterable, Union

from rich import box
from rich.console import Console
from rich.table import Table

from recurring_scheduler.domain.models import MissedCycle, UpcomingCycle
from recurring_scheduler.domain.reports import TickReport


def _fmt_ts(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z")


def build_tick_table(report: TickReport) -> Table:
    """
    Summarize one tick as a rich table: one row per phase.
    """
    due = report.due
    table = Table(
        title=f"Scheduler Tick @ {_fmt_ts(report.now)}",
        box=box.ROUNDED,
        caption=f"Duration: {report.duration_seconds:.3f}s",
    )
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Evaluated", justify="right", style="magenta")
    table.add_column("Result", justify="right", style="bold green")
    table.add_column("Failures", justify="right", style="red")

    table.add_row("due", str(due.evaluated), f"{due.materialized} materialized", str(len(due.failures)))
    table.add_row("upcoming", "-", f"{len(report.upcoming)} notified", "-")
    table.add_row("missed", "-", f"{len(report.missed)} flagged", "-")
    return table


def build_cycles_table(
    title: str, cycles: Iterable[Union[UpcomingCycle, MissedCycle]]
) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Owner", style="magenta")
    table.add_column("Label", style="white")
    table.add_column("When", justify="right", style="yellow")

    for cycle in cycles:
        when = cycle.next_due if isinstance(cycle, UpcomingCycle) else cycle.next_expected
        table.add_row(cycle.rule_id, cycle.owner_id, cycle.label, _fmt_ts(when))
    return table


def print_tick_report(report: TickReport, console: Console | None = None) -> None:
    console = console or Console()
    console.print(build_tick_table(report))

    if report.due.failures:
        failures = Table(title="Failed rules", box=box.ROUNDED)
        failures.add_column("Rule", style="cyan")
        failures.add_column("Error type", style="red")
        failures.add_column("Error")
        for failure in report.due.failures:
            failures.add_row(failure.rule_id, failure.error_type, failure.error)
        console.print(failures)

    if report.upcoming:
        console.print(build_cycles_table("Upcoming cycles", report.upcoming))
    if report.missed:
        console.print(build_cycles_table("Missed cycles", report.missed))


def print_cycles(
    title: str,
    cycles: Iterable[Union[UpcomingCycle, MissedCycle]],
    console: Console | None = None,
) -> None:
    console = console or Console()
    cycles = list(cycles)
    if not cycles:
        console.print(f"[yellow]No {title.lower()}.[/yellow]")
        return
    console.print(build_cycles_table(title, cycles))


__all__ = ["build_tick_table", "build_cycles_table", "print_tick_report", "print_cycles"]
