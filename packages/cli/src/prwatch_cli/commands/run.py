"""run command — the polling loop."""

from __future__ import annotations

import logging

import click

from prwatch_core.poller import Poller

logger = logging.getLogger(__name__)


@click.command("run")
@click.option("--once", is_flag=True, help="Run a single tick and exit.")
@click.pass_context
def run_cmd(ctx, once: bool):
    """Poll the configured repositories, review new pull requests and answer comments.

    Runs until interrupted with Ctrl+C.
    """
    from prwatch_cli.factory import build_controllers

    config = ctx.obj["config"]
    store = ctx.obj["store"]
    review, comments = build_controllers(config, store)

    poller = Poller(
        review,
        comments,
        store,
        interval=config["poll_interval"],
        retention_days=config["retention_days"],
    )

    logger.info("prwatch starting")
    logger.info("Watching repos: %s", ", ".join(config["repos"]))
    logger.info("Poll interval: %ss", config["poll_interval"])
    logger.info("Discord notifications: %s", "enabled" if config.get("discord_bot_token") else "disabled")

    ticks = poller.run_forever(max_ticks=1 if once else None)
    logger.info("Stopped after %d tick(s)", ticks)
