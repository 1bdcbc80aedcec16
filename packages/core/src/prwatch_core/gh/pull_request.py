from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

import requests
from github import Auth, Github, GithubException

logger = logging.getLogger(__name__)

BOT_MARKER = "\n\n<!-- prwatch-bot -->"
BOT_PREFIX = "**PR Reviewer** | "
FOOTER = "\n\n---\n*Automated review by PR Reviewer*"

_REVIEW_MARKER = "<!-- prwatch-review: {sha} -->"
_SHA_RE = re.compile(r"^[0-9a-f]{40}$")
_DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"


@dataclass
class PRComment:
    """A human comment on a pull request, diff-anchored or general."""

    id: int
    body: str
    author: str
    created_at: datetime | None
    is_inline: bool
    path: str | None = None
    line: int | None = None
    diff_hunk: str | None = None
    in_reply_to_id: int | None = None
    user_type: str = "User"


def get_client(token: str) -> Github:
    return Github(auth=Auth.Token(token))


def get_repo(client: Github, repo_name: str):
    return client.get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def list_open_pulls(repo, base: str | None = None) -> list:
    if base:
        return list(repo.get_pulls(state="open", base=base))
    return list(repo.get_pulls(state="open"))


def get_raw_diff(pr, token: str, timeout: int = 60) -> str:
    """Download the PR's full unified diff using GitHub's diff media type."""
    response = requests.get(
        pr.url,
        headers={"Accept": _DIFF_MEDIA_TYPE, "Authorization": f"Bearer {token}"},
        timeout=timeout,
    )
    response.raise_for_status()
    return response.text


def get_full_commit_sha(pr) -> str:
    """Return the 40-char head SHA, falling back to the PR's last commit.

    Raises ValueError when neither source yields a full SHA.
    """
    sha = pr.head.sha or ""
    if _SHA_RE.match(sha):
        return sha
    commits = list(pr.get_commits())
    if commits and _SHA_RE.match(commits[-1].sha or ""):
        return commits[-1].sha
    raise ValueError(f"Could not resolve full commit SHA for PR #{pr.number}")


def get_labels(pr) -> list[str]:
    return [label.name for label in pr.labels]


def add_label(pr, label: str) -> None:
    pr.add_to_labels(label)


def remove_label(pr, label: str) -> None:
    pr.remove_from_labels(label)


def review_marker(sha: str) -> str:
    return _REVIEW_MARKER.format(sha=sha)


def has_review_marker(pr, sha: str) -> bool:
    """Return True if a review pass for ``sha`` was already posted on this PR."""
    marker = review_marker(sha)
    if any(marker in (review.body or "") for review in pr.get_reviews()):
        return True
    return any(marker in (comment.body or "") for comment in pr.get_issue_comments())


def post_inline_review(repo, pr, sha: str, body: str, comments: list[dict]) -> bool:
    """Post a COMMENT review with inline comments. Returns False if GitHub rejects it."""
    try:
        pr.create_review(commit=repo.get_commit(sha), body=body, event="COMMENT", comments=comments)
    except GithubException as e:
        logger.warning("Inline review rejected on PR #%d (%s): %s", pr.number, e.status, e.data)
        return False
    logger.info("Posted review with %d inline comment(s) on PR #%d", len(comments), pr.number)
    return True


def post_comment(pr, body: str) -> None:
    pr.create_issue_comment(body)
    logger.info("Posted comment on PR #%d", pr.number)


def reply_to_comment(pr, comment_id: int, body: str) -> None:
    """Reply in the thread of an inline comment, or as a plain comment if that fails."""
    tagged = BOT_PREFIX + body + BOT_MARKER
    try:
        pr.create_review_comment_reply(comment_id, tagged)
    except GithubException as e:
        logger.warning("Threaded reply to comment %d failed (%s), posting a plain comment", comment_id, e.status)
        post_comment(pr, tagged)


def is_user_comment(body: str, login: str, user_type: str, bot_login: str | None, allowed_authors) -> bool:
    """Return True for comments a human wrote to the reviewer."""
    if BOT_MARKER.strip() in body:
        return False
    if user_type == "Bot":
        return False
    if bot_login and login == bot_login:
        return False
    if allowed_authors and login not in allowed_authors:
        return False
    return True


def _from_review_comment(c) -> PRComment:
    return PRComment(
        id=c.id,
        body=c.body or "",
        author=c.user.login,
        created_at=c.created_at,
        is_inline=True,
        path=c.path,
        line=c.line or c.original_line,
        diff_hunk=c.diff_hunk,
        in_reply_to_id=c.in_reply_to_id,
        user_type=c.user.type,
    )


def _from_issue_comment(c) -> PRComment:
    return PRComment(
        id=c.id,
        body=c.body or "",
        author=c.user.login,
        created_at=c.created_at,
        is_inline=False,
        user_type=c.user.type,
    )


def list_user_comments(pr, bot_login: str | None = None, allowed_authors=()) -> list[PRComment]:
    """Return human comments (inline and general), oldest first."""
    comments = [_from_review_comment(c) for c in pr.get_review_comments()]
    comments += [_from_issue_comment(c) for c in pr.get_issue_comments()]
    comments = [c for c in comments if is_user_comment(c.body, c.author, c.user_type, bot_login, allowed_authors)]
    return sorted(comments, key=lambda c: (c.created_at is None, c.created_at or datetime.min, c.id))
