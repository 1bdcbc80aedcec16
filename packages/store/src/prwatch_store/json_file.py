"""JsonFileStore — the default single-writer state file.

The whole store lives in memory and is rewritten to disk on every change.
Writes go to a temporary file in the same directory which then replaces the
state file via ``os.replace``, so a crash mid-write leaves the previous state
intact rather than a truncated file.

Data format: one JSON object keyed ``owner/repo#number`` whose values are
ReviewRecord dicts.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path

from prwatch_store.base import BaseStore
from prwatch_store.models import ReviewRecord, record_key

logger = logging.getLogger(__name__)


class JsonFileStore(BaseStore):
    """Keeps every ReviewRecord in one JSON file.

    Correct only while a single process writes the file. A missing or corrupt
    file at startup yields an empty store; a failed write keeps the in-memory
    state, and the next successful write persists it.
    """

    def __init__(self, path: str = "review-state.json"):
        self._path = Path(path)
        self._records: dict[str, ReviewRecord] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def list_records(self, repo: str | None = None) -> list[ReviewRecord]:
        records = [r.copy() for r in self._records.values()]
        if repo is not None:
            records = [r for r in records if r.repo == repo]
        return records

    def _fetch(self, repo: str, pr_number: int) -> ReviewRecord | None:
        return self._records.get(record_key(repo, pr_number))

    def _put(self, repo: str, pr_number: int, record: ReviewRecord) -> None:
        self._records[record_key(repo, pr_number)] = record
        self._save()

    def _delete(self, keys: list[tuple[str, int]]) -> None:
        for repo, pr_number in keys:
            self._records.pop(record_key(repo, pr_number), None)
        self._save()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
            self._records = {key: ReviewRecord.from_dict(value) for key, value in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Could not load state from %s (%s): %s", self._path, type(e).__name__, e)
            self._records = {}
            return
        logger.info("Loaded state: %d tracked PRs", len(self._records))

    def _save(self) -> None:
        payload = json.dumps({key: r.to_dict() for key, r in self._records.items()}, indent=2)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self._path.parent, prefix=f".{self._path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._path)
        except OSError as e:
            logger.warning("Could not save state to %s: %s", self._path, e)
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
