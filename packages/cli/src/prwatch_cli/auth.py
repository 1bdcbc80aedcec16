"""GitHub token lookup.

The watcher usually runs on a developer machine or a small server where the
GitHub CLI is already logged in, so a missing GITHUB_TOKEN falls back to the
token stored by ``gh auth login``.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_GH_TIMEOUT = 5


def resolve_github_token() -> str | None:
    """Return GITHUB_TOKEN, else the gh CLI's token, else None. Never raises."""
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=_GH_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("gh CLI token lookup unavailable: %s", e)
        return None

    token = result.stdout.strip() if result.returncode == 0 else ""
    if token:
        logger.debug("Using GitHub token from the gh CLI session")
        return token
    return None
