"""Builds stores and controllers from a loaded config.

Lives in the CLI so neither prwatch_core nor prwatch_store knows about the
config file format.
"""

from __future__ import annotations

import click

from prwatch_core.comments import CommentController
from prwatch_core.config import validate_config
from prwatch_core.gh.pull_request import get_client
from prwatch_core.notify import build_notifier
from prwatch_core.reviewer import ReviewController, build_agent


def build_store(config: dict):
    """Instantiate the configured store.

      store: json   → JsonFileStore at state_file (default)
      store: sqlite → SQLiteStore at store_path
    """
    store_type = config.get("store", "json")

    if store_type == "json":
        from prwatch_store.json_file import JsonFileStore

        return JsonFileStore(path=config.get("state_file", "review-state.json"))

    if store_type == "sqlite":
        from prwatch_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".prwatch.db"))

    raise click.UsageError(f"Unknown store {store_type!r}. Choose 'json' or 'sqlite'.")


def build_controllers(config: dict, store) -> tuple[ReviewController, CommentController]:
    """Validate the config and wire both controllers to one agent, notifier and client.

    Raises click.UsageError when the config is unusable or no token is available.
    """
    errors = validate_config(config)
    if errors:
        raise click.UsageError("\n".join(errors))
    if not config.get("github_token"):
        raise click.UsageError("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login`.")

    client = get_client(config["github_token"])
    agent = build_agent(config)
    notifier = build_notifier(config)
    review = ReviewController(config, store, agent, notifier, client)
    comments = CommentController(config, store, agent, notifier, client)
    return review, comments
