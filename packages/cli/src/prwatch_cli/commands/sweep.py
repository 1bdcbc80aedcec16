"""sweep command — remove expired review records."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("sweep")
@click.option("--days", type=int, default=None, help="Retention window in days. Defaults to retention_days.")
@click.pass_context
def sweep_cmd(ctx, days: int | None):
    """Delete records whose last review is older than the retention window."""
    config = ctx.obj["config"]
    if days is None:
        days = config.get("retention_days", 30)
    if days < 0:
        raise click.UsageError("--days must not be negative.")

    removed = ctx.obj["store"].sweep(days)
    console.print(f"Removed {removed} record(s) older than {days} day(s).")
