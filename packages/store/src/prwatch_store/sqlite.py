"""SQLiteStore — embedded store with per-record atomic updates.

Why SQLite as the alternative backend:
- Batteries included: ships with Python, no extra dependencies.
- Each ``set`` is one ``INSERT OR REPLACE`` in its own transaction, so a
  write touches only its own key instead of rewriting the whole store.
- Safe to point a second, read-only process (``prwatch history``) at the
  same file while the poller is running.

Schema:
  review_records — one row per pull request; the record itself is stored as
                   JSON so new record fields never need a migration.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3

from prwatch_store.base import BaseStore
from prwatch_store.models import ReviewRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS review_records (
    repo            TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    reviewed_at     TEXT,
    record_json     TEXT NOT NULL,
    PRIMARY KEY (repo, pr_number)
);
CREATE INDEX IF NOT EXISTS idx_review_records_repo ON review_records (repo);
"""


class SQLiteStore(BaseStore):
    """Stores review state in a local SQLite database file.

    The database file path defaults to `.prwatch.db` in the current working
    directory. Configure via .prwatch.yml: `store: sqlite` and `store_path`.
    """

    def __init__(self, db_path: str = ".prwatch.db"):
        try:
            self._conn = self._open(db_path)
        except sqlite3.DatabaseError as e:
            logger.warning("Could not open state database %s (%s); starting with an empty store", db_path, e)
            self._conn = self._open(self._set_aside(db_path))

    @staticmethod
    def _open(db_path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(db_path)
        try:
            conn.row_factory = sqlite3.Row
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    @staticmethod
    def _set_aside(db_path: str) -> str:
        """Move an unreadable database out of the way; return the path to open instead."""
        backup = db_path + ".corrupt"
        try:
            os.replace(db_path, backup)
        except OSError as e:
            logger.warning("Could not move %s aside (%s); keeping state in memory only", db_path, e)
            return ":memory:"
        logger.warning("Moved unreadable state database to %s", backup)
        return db_path

    def list_records(self, repo: str | None = None) -> list[ReviewRecord]:
        if repo is not None:
            rows = self._conn.execute(
                "SELECT record_json FROM review_records WHERE repo=? ORDER BY reviewed_at",
                (repo,),
            ).fetchall()
        else:
            rows = self._conn.execute("SELECT record_json FROM review_records ORDER BY reviewed_at").fetchall()
        records = (self._row_to_record(r) for r in rows)
        return [r for r in records if r is not None]

    def close(self) -> None:
        self._conn.close()

    def _fetch(self, repo: str, pr_number: int) -> ReviewRecord | None:
        row = self._conn.execute(
            "SELECT record_json FROM review_records WHERE repo=? AND pr_number=?",
            (repo, pr_number),
        ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def _put(self, repo: str, pr_number: int, record: ReviewRecord) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO review_records (repo, pr_number, reviewed_at, record_json)
                    VALUES (?, ?, ?, ?)
                    """,
                    (repo, pr_number, record.reviewed_at, json.dumps(record.to_dict())),
                )
        except sqlite3.Error as e:
            logger.warning("SQLiteStore could not save %s#%d: %s", repo, pr_number, e)

    def _delete(self, keys: list[tuple[str, int]]) -> None:
        try:
            with self._conn:
                self._conn.executemany(
                    "DELETE FROM review_records WHERE repo=? AND pr_number=?",
                    keys,
                )
        except sqlite3.Error as e:
            logger.warning("SQLiteStore could not delete %d record(s): %s", len(keys), e)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReviewRecord | None:
        try:
            return ReviewRecord.from_dict(json.loads(row["record_json"]))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Skipping unreadable record row: %s", e)
            return None
