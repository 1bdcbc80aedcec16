"""CLI entry point for prwatch.

Commands:
  run      — poll the configured repositories and review pull requests
  review   — review one pull request now
  history  — show stored review records
  sweep    — drop records older than the retention window
"""

from __future__ import annotations

import importlib.metadata
import logging
from logging.handlers import RotatingFileHandler

import click
from rich.console import Console
from rich.logging import RichHandler

from prwatch_cli.commands.history import history_cmd
from prwatch_cli.commands.review import review_cmd
from prwatch_cli.commands.run import run_cmd
from prwatch_cli.commands.sweep import sweep_cmd

console = Console()

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Log to the console through rich and, if ``log_file`` is set, to a rotating file."""
    handlers: list[logging.Handler] = [RichHandler(console=console, rich_tracebacks=True)]
    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=1, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
    # PyGithub and urllib3 are chatty at DEBUG.
    logging.getLogger("github").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prwatch"),
    prog_name="prwatch",
)
@click.option(
    "--config",
    "config_path",
    default=".prwatch.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRWATCH_CONFIG",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Watches GitHub pull requests and reviews them with an AI agent."""
    from prwatch_cli.auth import resolve_github_token
    from prwatch_cli.factory import build_store
    from prwatch_core.config import load_config

    ctx.ensure_object(dict)

    config = load_config(config_path)
    setup_logging(verbose or config.get("debug", False), config.get("log_file"))

    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(run_cmd)
main.add_command(review_cmd)
main.add_command(history_cmd)
main.add_command(sweep_cmd)
