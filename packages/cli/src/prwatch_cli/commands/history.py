"""history command — display stored review records."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("history")
@click.option("--repo", default=None, help="Only show records for this repository (owner/name).")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str | None, limit: int):
    """Show the review record of every tracked pull request, most recent first."""
    store = ctx.obj["store"]

    records = store.list_records(repo)
    if not records:
        console.print("[yellow]No review records found.[/yellow]")
        return

    records = sorted(records, key=lambda r: r.reviewed_at, reverse=True)[:limit]

    table = Table(title="Review History", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold")
    table.add_column("SHA", width=8)
    table.add_column("Rubrics")
    table.add_column("Comments", justify="right", width=10)
    table.add_column("Re-review", width=10)
    table.add_column("Reviewed At", width=20)

    for r in records:
        rubrics = ", ".join(f"{o.rubric}: {o.status}" for o in r.reviews) or "-"
        table.add_row(
            r.key,
            r.commit_sha[:7],
            rubrics,
            str(len(r.processed_comment_ids)),
            "yes" if r.rereview_requested else "",
            r.reviewed_at[:19].replace("T", " "),
        )

    console.print(table)
