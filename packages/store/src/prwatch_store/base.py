"""Abstract store interface.

Every backend (JSON file, SQLite) implements this interface. Controllers
depend on BaseStore, not on a concrete backend, so backends are swappable
without touching review or comment handling.

The store is the only shared mutable resource in the process. Callers never
hold on to a stored record: ``get`` hands out an independent copy, the caller
mutates it, and ``set`` replaces the stored record wholesale.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from prwatch_store.models import parse_timestamp

if TYPE_CHECKING:
    from prwatch_store.models import ReviewRecord

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class BaseStore(ABC):
    """Pluggable persistence layer for per-pull-request review state."""

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def get(self, repo: str, pr_number: int) -> ReviewRecord | None:
        """Return a copy of the record for ``repo#pr_number``, or None."""
        record = self._fetch(repo, pr_number)
        return record.copy() if record is not None else None

    def set(self, repo: str, pr_number: int, record: ReviewRecord) -> None:
        """Replace the record for ``repo#pr_number`` and persist it.

        Raises ValueError if the new record's ``reviewed_at`` is older than
        the one it replaces.
        """
        existing = self._fetch(repo, pr_number)
        if existing is not None:
            old = parse_timestamp(existing.reviewed_at)
            new = parse_timestamp(record.reviewed_at)
            if old is not None and new is not None and new < old:
                raise ValueError(
                    f"Refusing to move reviewed_at backwards for {repo}#{pr_number}: "
                    f"{record.reviewed_at} < {existing.reviewed_at}"
                )
        self._put(repo, pr_number, record.copy())

    def sweep(self, retention_days: int = DEFAULT_RETENTION_DAYS, now: datetime | None = None) -> int:
        """Delete records whose ``reviewed_at`` predates the retention window.

        Records with a missing or unparseable timestamp are kept. Returns the
        number of records removed.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        expired = []
        for record in self.list_records():
            reviewed_at = parse_timestamp(record.reviewed_at)
            if reviewed_at is not None and reviewed_at < cutoff:
                expired.append((record.repo, record.pr_number))

        if expired:
            self._delete(expired)
            logger.info("Cleaned up %d stale PR records", len(expired))
        return len(expired)

    @abstractmethod
    def list_records(self, repo: str | None = None) -> list[ReviewRecord]:
        """Return copies of all records, optionally filtered by repository.

        Returns an empty list if nothing is stored — never raises.
        """

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Default is a no-op so callers can always call close() safely.
        """

    # ------------------------------------------------------------------ #
    # Abstract — implement in each backend                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _fetch(self, repo: str, pr_number: int) -> ReviewRecord | None:
        """Return the stored record (may be shared; callers copy it)."""

    @abstractmethod
    def _put(self, repo: str, pr_number: int, record: ReviewRecord) -> None:
        """Store ``record`` and persist it before returning."""

    @abstractmethod
    def _delete(self, keys: list[tuple[str, int]]) -> None:
        """Remove the given ``(repo, pr_number)`` keys and persist the result."""
