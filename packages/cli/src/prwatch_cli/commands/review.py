"""review command — review one pull request immediately."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console
from rich.table import Table

from prwatch_core.gh.pull_request import get_pull, get_repo

console = Console()

_STATUS_STYLE = {
    "PASSED": "green",
    "PASSED_WITH_SUGGESTIONS": "yellow",
    "CHANGES_REQUESTED": "red",
    "ERROR": "red",
}


@click.command("review")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def review_cmd(ctx, repo: str, pr_number: int):
    """Run every rubric on one pull request and post the results.

    Posts even if this commit was already reviewed, and updates the stored
    record like a regular pass.
    """
    from prwatch_cli.factory import build_controllers

    config = dict(ctx.obj["config"])
    if not config.get("repos"):
        config["repos"] = [repo]
    review, _ = build_controllers(config, ctx.obj["store"])

    try:
        gh_repo = get_repo(review.client, repo)
        pr = get_pull(gh_repo, pr_number)
    except GithubException:
        raise click.UsageError(f"PR #{pr_number} not found in {repo}.")

    console.print(f"[bold]Reviewing {repo}#{pr_number}:[/bold] {pr.title}")
    record = review.review_pull(repo, gh_repo, pr, force=True)
    if record is None:
        console.print("[red]Could not fetch the diff or head commit. Nothing was posted.[/red]")
        ctx.exit(1)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Rubric")
    table.add_column("Status")
    table.add_column("Findings", justify="right")
    table.add_column("Error", max_width=50)
    for outcome in record.reviews:
        style = _STATUS_STYLE.get(outcome.status, "white")
        table.add_row(
            outcome.rubric,
            f"[{style}]{outcome.status}[/{style}]",
            str(outcome.finding_count),
            outcome.error or "",
        )
    console.print(table)
