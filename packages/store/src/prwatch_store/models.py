"""Review state data models.

Decoupled from prwatch_core so the store layer has no knowledge of how
reviews are produced. Records round-trip through plain dicts so any backend
can persist them as JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def record_key(repo: str, pr_number: int) -> str:
    """Return the storage key for a pull request, e.g. ``owner/repo#12``."""
    return f"{repo}#{pr_number}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting GitHub's trailing ``Z``.

    Returns None for empty or malformed values. Naive timestamps are treated
    as UTC so they compare against aware ones.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class RubricOutcome:
    """Result of one rubric within a review pass."""

    rubric: str
    status: str  # agent-reported status, or "ERROR" when the rubric failed to run
    finding_count: int = 0
    error: str | None = None


@dataclass
class ReviewRecord:
    """Durable per-pull-request review state.

    ``processed_comment_ids`` is an ordered, append-only log of handled
    comment ids. Membership checks go through an internal set so replaying a
    large ledger stays cheap.
    """

    repo: str
    pr_number: int
    reviewed_at: str  # ISO-8601 UTC timestamp of the last completed pass
    last_pr_update: str  # upstream updated_at marker at review time
    commit_sha: str  # exact head version reviewed
    reviews: list[RubricOutcome] = field(default_factory=list)
    processed_comment_ids: list[int] = field(default_factory=list)
    rereview_requested: bool = False
    _processed: set[int] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered: list[int] = []
        for comment_id in self.processed_comment_ids:
            if comment_id not in self._processed:
                self._processed.add(comment_id)
                ordered.append(comment_id)
        self.processed_comment_ids = ordered

    @property
    def key(self) -> str:
        return record_key(self.repo, self.pr_number)

    def has_processed(self, comment_id: int) -> bool:
        return comment_id in self._processed

    def mark_processed(self, comment_id: int) -> bool:
        """Append ``comment_id`` to the ledger. Returns False if it was already there."""
        if comment_id in self._processed:
            return False
        self._processed.add(comment_id)
        self.processed_comment_ids.append(comment_id)
        return True

    def to_dict(self) -> dict:
        return {
            "repo": self.repo,
            "pr_number": self.pr_number,
            "reviewed_at": self.reviewed_at,
            "last_pr_update": self.last_pr_update,
            "commit_sha": self.commit_sha,
            "reviews": [
                {
                    "rubric": r.rubric,
                    "status": r.status,
                    "finding_count": r.finding_count,
                    "error": r.error,
                }
                for r in self.reviews
            ],
            "processed_comment_ids": list(self.processed_comment_ids),
            "rereview_requested": self.rereview_requested,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ReviewRecord:
        return cls(
            repo=d.get("repo", ""),
            pr_number=d.get("pr_number", 0),
            reviewed_at=d.get("reviewed_at", ""),
            last_pr_update=d.get("last_pr_update", ""),
            commit_sha=d.get("commit_sha", ""),
            reviews=[
                RubricOutcome(
                    rubric=r.get("rubric", ""),
                    status=r.get("status", "ERROR"),
                    finding_count=r.get("finding_count", 0),
                    error=r.get("error"),
                )
                for r in d.get("reviews", [])
            ],
            processed_comment_ids=list(d.get("processed_comment_ids", [])),
            rereview_requested=bool(d.get("rereview_requested", False)),
        )

    def copy(self) -> ReviewRecord:
        return ReviewRecord.from_dict(self.to_dict())
