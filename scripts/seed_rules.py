"""
Demo rule generation for the recurring transaction scheduler.

Produces a deterministic pseudo-random set of recurrence rules relative to a
reference time, writes them as JSON (loadable with `--rules-file`), and can
upsert them into Postgres.
"""

from __future__ import annotations

import asyncio
import random
import sys
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import List

import typer
from pydantic import TypeAdapter

from recurring_scheduler.domain.models import Frequency, PayloadTemplate, RecurrenceRule
from recurring_scheduler.infrastructure.db_factory import PoolManager
from recurring_scheduler.stores.postgres import PostgresRecurrenceStore

app = typer.Typer(help="Generate demo recurrence rules and optionally load them into Postgres.")

_RULES_ADAPTER = TypeAdapter(List[RecurrenceRule])

CATEGORIES = ["rent", "salary", "utilities", "subscriptions", "insurance", "groceries"]


def _generate_rules(count: int, seed: int, now: datetime) -> List[RecurrenceRule]:
    rng = random.Random(seed)
    frequencies = [f.value for f in Frequency]
    rules: List[RecurrenceRule] = []
    for i in range(count):
        frequency = rng.choice(frequencies)
        # Spread references over the last ~2 cycles so the set mixes due,
        # upcoming and missed rules.
        span_hours = {"daily": 48, "weekly": 336, "monthly": 1440, "yearly": 17520}[frequency]
        reference = now - timedelta(hours=rng.randint(0, span_hours))
        processed = rng.random() < 0.7
        category = rng.choice(CATEGORIES)
        rules.append(
            RecurrenceRule(
                id=f"rule-{i:05d}",
                owner_id=f"owner-{rng.randint(1, max(1, count // 5)):04d}",
                frequency=frequency,
                anchor_date=reference if not processed else reference - timedelta(days=400),
                last_processed=reference if processed else None,
                end_date=now + timedelta(days=365) if rng.random() < 0.2 else None,
                payload=PayloadTemplate(
                    type="income" if category == "salary" else "expense",
                    amount=Decimal(f"{rng.uniform(5, 5_000):.2f}"),
                    category=category,
                    description=f"{category.title()} #{i}" if rng.random() < 0.8 else None,
                    tags=(category, frequency),
                ),
            )
        )
    return rules


def _write_rules_json(path: Path, rules: List[RecurrenceRule]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_RULES_ADAPTER.dump_json(rules, indent=2))


async def _load_into_db(dsn: str | None, rules: List[RecurrenceRule]) -> int:
    store = PostgresRecurrenceStore(dsn_override=dsn)
    try:
        await store.ensure_schema()
        for rule in rules:
            await store.upsert_rule(rule)
    finally:
        await store.close()
        await PoolManager().close_all()
    return len(rules)


@app.command()
def main(
    count: int = typer.Option(50, "--count", "-n", help="Number of rules to generate."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    now: str | None = typer.Option(
        None, "--now", help="Reference time (ISO 8601). Defaults to the current UTC time."
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Optional JSON output path."
    ),
    dsn: str | None = typer.Option(None, "--dsn", help="Optional DSN override for Postgres."),
    no_load: bool = typer.Option(
        False, "--no-load", help="Only generate JSON; skip loading into Postgres."
    ),
) -> None:
    """
    Generate demo rules and optionally upsert them into Postgres.
    """
    start = time.perf_counter()
    reference = (
        datetime.fromisoformat(now.replace("Z", "+00:00")) if now else datetime.now(timezone.utc)
    )
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)

    rules = _generate_rules(count, seed, reference)
    typer.echo(f"Generated {len(rules):,} rules (seed={seed}, now={reference.isoformat()})")

    if output:
        _write_rules_json(output, rules)
        typer.echo(f"Wrote {output}")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    loaded = asyncio.run(_load_into_db(dsn, rules))
    typer.echo(f"Loaded {loaded:,} rules in {time.perf_counter() - start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
