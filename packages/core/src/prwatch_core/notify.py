"""Notification sinks. Fire-and-forget: a failed notification is a warning, never an error."""

from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"


class NoOpNotifier:
    """Used when no notification channel is configured."""

    def notify(self, message: str) -> None:
        logger.debug("Notification skipped (no sink configured): %s", message.splitlines()[0] if message else "")


class DiscordNotifier:
    """Posts messages to a Discord channel through the bot REST API."""

    TIMEOUT = 10

    def __init__(self, token: str, channel_id: str):
        self.token = token
        self.channel_id = channel_id

    @property
    def url(self) -> str:
        return f"{DISCORD_API}/channels/{self.channel_id}/messages"

    def notify(self, message: str) -> None:
        try:
            response = requests.post(
                self.url,
                headers={"Authorization": f"Bot {self.token}"},
                json={"content": message},
                timeout=self.TIMEOUT,
            )
        except requests.RequestException as e:
            logger.warning("Discord notification error: %s", e)
            return
        if not response.ok:
            logger.warning("Discord notification failed: %s", response.status_code)


def build_notifier(config: dict):
    token = config.get("discord_bot_token")
    channel_id = config.get("discord_channel_id")
    if token and channel_id:
        return DiscordNotifier(token=token, channel_id=channel_id)
    return NoOpNotifier()
