"""Base agent implementing the Template Method pattern.

Every backend shares the same invocation contract:
    run(prompt, cwd) → _call_with_retry() → _call()   ← only this differs per backend

Subclasses implement two things only:
  - __init__: validate and store whatever the backend needs
  - _call: make one raw invocation and return the text response

An agent either returns text (possibly empty) or raises AgentError. A hard
timeout raises AgentTimeoutError and is never retried: by the time it fires
the whole time budget for this invocation is spent.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 1
_TIMEOUT_SECONDS = 300


class AgentError(Exception):
    """The agent could not produce a response."""


class AgentTimeoutError(AgentError):
    """The agent exceeded its wall-clock timeout and was stopped."""


class BaseAgent(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    # Whether the backend can act inside a local checkout (edit, commit, push).
    supports_workdir: bool = False

    def __init__(self, timeout: float = _TIMEOUT_SECONDS):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def run(self, prompt: str, cwd: str | None = None) -> str:
        """Send ``prompt`` to the agent and return its text answer.

        Raises AgentTimeoutError on timeout and AgentError on any other
        failure, so callers can tell a failure from an empty answer.
        """
        return self._call_with_retry(prompt, cwd)

    @abstractmethod
    def _call(self, prompt: str, cwd: str | None) -> str:
        """Make a single invocation and return the raw text response.

        Should raise AgentError (or AgentTimeoutError) on failure.
        """

    def _call_with_retry(self, prompt: str, cwd: str | None) -> str:
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call(prompt, cwd)
            except AgentTimeoutError:
                logger.error("%s timed out after %ss", self.name, self.timeout)
                raise
            except AgentError as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error("%s failed after %d attempt(s): %s", self.name, self.MAX_RETRIES, e)
                    raise
                delay = 2**attempt
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %ds...",
                    self.name,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise AgentError(f"{self.name} made no attempts (MAX_RETRIES={self.MAX_RETRIES})")
