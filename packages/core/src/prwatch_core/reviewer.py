"""Review cycle: decide which pull requests need a pass, run the rubrics, post the results."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum

import requests
from github import GithubException

from prwatch_core.config import Rubric, load_rubric_prompt, load_rubrics
from prwatch_core.findings import Finding, ReviewResponse, parse_review_response
from prwatch_core.gh.pull_request import (
    BOT_MARKER,
    FOOTER,
    get_full_commit_sha,
    get_labels,
    get_raw_diff,
    get_repo,
    has_review_marker,
    list_open_pulls,
    post_comment,
    post_inline_review,
    remove_label,
    review_marker,
)
from prwatch_core.providers.anthropic import AnthropicAgent
from prwatch_core.providers.base import AgentError
from prwatch_core.providers.claude_code import ClaudeCodeAgent
from prwatch_core.providers.openai import OpenAIAgent
from prwatch_core.utils.diff import FilePositions, parse_diff_positions, resolve_position
from prwatch_store.models import ReviewRecord, RubricOutcome, parse_timestamp, record_key, utc_now

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Diff truncated]"

REASON_UNSEEN = "unseen"
REASON_REREVIEW = "rereview"
REASON_NEW_COMMITS = "new-commits"


class ReviewState(Enum):
    UNSEEN = "unseen"
    REVIEWING = "reviewing"
    REVIEWED = "reviewed"


@dataclass
class RubricResult:
    """Outcome of running one rubric: a parsed response or an error, never both."""

    rubric: Rubric
    response: ReviewResponse | None = None
    error: str | None = None

    @property
    def findings(self) -> list[Finding]:
        return self.response.findings if self.response else []

    def outcome(self) -> RubricOutcome:
        if self.response is None:
            return RubricOutcome(rubric=self.rubric.name, status="ERROR", error=self.error)
        return RubricOutcome(
            rubric=self.rubric.name,
            status=self.response.status,
            finding_count=len(self.response.findings),
        )


def build_agent(config: dict):
    agent = config.get("agent", "claude-code")
    timeout = config.get("agent_timeout", 300)
    if agent == "claude-code":
        return ClaudeCodeAgent(claude_path=config.get("claude_path", "claude"), timeout=timeout)
    if agent == "anthropic":
        return AnthropicAgent(api_key=config["anthropic_api_key"], timeout=timeout)
    if agent == "openai":
        return OpenAIAgent(api_key=config["openai_api_key"], timeout=timeout)
    raise ValueError(f"Unknown agent: {agent!r}. Choose 'claude-code', 'anthropic' or 'openai'.")


def needs_review(pr, record: ReviewRecord | None, label: str) -> str | None:
    """Return why ``pr`` needs a review pass, or None if it is up to date.

    New commits are detected by head SHA. ``updated_at`` also moves whenever
    the bot itself comments, so it would trigger a review after every pass.
    """
    if record is None:
        return REASON_UNSEEN
    if record.rereview_requested or label in get_labels(pr):
        return REASON_REREVIEW
    if pr.head.sha != record.commit_sha:
        return REASON_NEW_COMMITS
    return None


def truncate_diff(diff_text: str, max_chars: int) -> str:
    if len(diff_text) <= max_chars:
        return diff_text
    return diff_text[:max_chars] + TRUNCATION_MARKER


def resolve_findings(findings: list[Finding], diff_map: dict[str, FilePositions]) -> None:
    """Fill in ``position`` on each finding; findings outside the diff keep None."""
    for finding in findings:
        if not finding.file:
            continue
        finding.position = resolve_position(finding.file, finding.line, diff_map)


def build_rubric_prompt(rubric_text: str, pr, repo_name: str, diff_text: str) -> str:
    return (
        f"{rubric_text}\n\n---\n\nHere is the pull request diff to review:\n\n"
        f"PR Title: {pr.title}\nBranch: {pr.head.ref}\nRepository: {repo_name}\n\n"
        f"```diff\n{diff_text}\n```"
    )


def build_inline_comments(results: list[RubricResult]) -> list[dict]:
    """Group every positioned finding of the pass into one comment per ``(file, position)``.

    Rubrics are visited in run order and findings in agent order, so when two
    rubrics flag the same spot their messages share one annotation.
    """
    grouped: dict[tuple[str, int], dict] = {}
    for result in results:
        for f in result.findings:
            if not f.file or f.position is None:
                continue
            entry = f"**[{f.severity}]** {f.message}"
            key = (f.file, f.position)
            if key in grouped:
                grouped[key]["body"] += f"\n\n{entry}"
            else:
                grouped[key] = {"path": f.file, "position": f.position, "body": entry}

    comments = list(grouped.values())
    for comment in comments:
        comment["body"] += BOT_MARKER
    return comments


def _severity_breakdown(findings: list[Finding]) -> str:
    counts = Counter(f.severity for f in findings)
    return ", ".join(f"{n} {severity.lower()}" for severity, n in counts.items())


def build_review_body(results: list[RubricResult], sha: str) -> str:
    lines = ["## Automated Review\n"]
    for r in results:
        if r.response is None:
            continue
        status = "PASSED" if not r.findings else r.response.display_status
        line = f"**{r.rubric.label}**: {status}"
        if r.response.summary:
            line += f". {r.response.summary}"
        lines.append(line)
    lines.append(f"\n{review_marker(sha)}")
    return "\n".join(lines) + BOT_MARKER


def build_fallback_body(entries: list[tuple[Rubric, Finding]]) -> str:
    """Flattened comment for findings that could not be placed inline."""
    lines = ["## Review Findings\n"]
    current = None
    for rubric, f in entries:
        if rubric.name != current:
            if current is not None:
                lines.append("")
            lines.append(f"### {rubric.label}")
            current = rubric.name
        location = f"{f.file}:{f.line}" if f.file else "general"
        lines.append(f"- **[{f.severity}]** `{location}`: {f.message}")
    return "\n".join(lines) + FOOTER + BOT_MARKER


def build_summary_body(results: list[RubricResult], sha: str) -> str:
    lines = ["## Review Summary\n"]
    total = 0
    for r in results:
        if r.response is None:
            lines.append(f"**{r.rubric.label}**: failed to run")
            continue
        count = len(r.findings)
        total += count
        if count == 0:
            lines.append(f"**{r.rubric.label}**: {r.response.display_status}")
        else:
            lines.append(f"**{r.rubric.label}**: {r.response.display_status} ({_severity_breakdown(r.findings)})")

    if total == 0:
        lines.append("\nNo issues found.")
    else:
        lines.append(f"\n{total} total findings. See inline comments for details.")
    lines.append(f"\n{review_marker(sha)}")
    return "\n".join(lines) + FOOTER + BOT_MARKER


def build_notification(repo_name: str, pr, results: list[RubricResult]) -> str:
    url = f"https://github.com/{repo_name}/pull/{pr.number}"
    total = sum(len(r.findings) for r in results)
    if total == 0:
        return f"**PR #{pr.number}** all checks passed\n> {pr.title}\n{url}"

    breakdown = []
    for r in results:
        if r.response is None:
            breakdown.append(f"{r.rubric.label}: error")
        elif not r.findings:
            breakdown.append(f"{r.rubric.label}: passed")
        else:
            breakdown.append(f"{r.rubric.label}: {len(r.findings)} issues ({_severity_breakdown(r.findings)})")
    return f"**PR #{pr.number}** {total} issues found\n> {pr.title}\n{' | '.join(breakdown)}\n{url}"


def _iso(value) -> str:
    return value.isoformat() if value is not None else ""


class ReviewController:
    """Runs review passes and records them in the store.

    A pass is: fetch the head SHA and the full diff, run every rubric in
    order, post one grouped inline review plus a summary comment, then write
    the pull request's record. The record write is the commit point. A crash
    before it means the pull request is reviewed again on the next tick, and
    the review marker keeps that second pass from posting twice.
    """

    def __init__(
        self,
        config: dict,
        store,
        agent,
        notifier,
        client,
        rubrics: list[Rubric] | None = None,
        sleep=time.sleep,
    ):
        self.config = config
        self.store = store
        self.agent = agent
        self.notifier = notifier
        self.client = client
        self.rubrics = rubrics if rubrics is not None else load_rubrics(config)
        self.sleep = sleep
        self.label = config.get("rereview_label", "review")
        self._in_progress: set[str] = set()

    def state_of(self, repo_name: str, pr_number: int) -> ReviewState:
        if record_key(repo_name, pr_number) in self._in_progress:
            return ReviewState.REVIEWING
        if self.store.get(repo_name, pr_number) is not None:
            return ReviewState.REVIEWED
        return ReviewState.UNSEEN

    def run_cycle(self) -> int:
        """Review every open pull request that needs it. Returns the number of passes completed."""
        reviewed = 0
        for repo_name in self.config.get("repos", []):
            try:
                repo = get_repo(self.client, repo_name)
                pulls = list_open_pulls(repo, self.config.get("base_branch"))
            except (GithubException, requests.RequestException) as e:
                logger.error("Could not list pull requests for %s: %s", repo_name, e)
                continue

            for pr in pulls:
                key = record_key(repo_name, pr.number)
                reason = needs_review(pr, self.store.get(repo_name, pr.number), self.label)
                if reason is None:
                    logger.debug("%s already reviewed at %s, skipping", key, pr.head.sha[:7])
                    continue

                logger.info("Reviewing %s (%s): %s", key, reason, pr.title)
                try:
                    if self.review_pull(repo_name, repo, pr, force=reason == REASON_REREVIEW) is not None:
                        reviewed += 1
                except Exception:
                    logger.exception("Failed to review %s", key)
        return reviewed

    def review_pull(self, repo_name: str, repo, pr, force: bool = False) -> ReviewRecord | None:
        """Run one review pass over ``pr`` and return the record written.

        Returns None without touching the store when the head SHA or the diff
        cannot be fetched; the pull request is picked up again next tick.
        ``force`` posts even if a pass for this SHA is already on the PR.
        """
        key = record_key(repo_name, pr.number)
        try:
            sha = get_full_commit_sha(pr)
            raw_diff = get_raw_diff(pr, self.config.get("github_token") or "")
        except (GithubException, requests.RequestException, ValueError) as e:
            logger.error("Could not fetch %s for review: %s", key, e)
            return None
        if not raw_diff.strip():
            logger.error("Empty diff for %s, skipping", key)
            return None

        previous = self.store.get(repo_name, pr.number)
        self._in_progress.add(key)
        try:
            if not force and has_review_marker(pr, sha):
                logger.info("%s already has a review for %s, recording it without reposting", key, sha[:7])
                results: list[RubricResult] = []
            else:
                results = self._run_rubrics(repo_name, pr, raw_diff)
                self._post_results(repo, pr, sha, results)
            record = self._write_record(repo_name, pr, sha, results, previous)
        finally:
            self._in_progress.discard(key)

        if self.label in get_labels(pr):
            try:
                remove_label(pr, self.label)
            except GithubException as e:
                logger.warning("Could not remove label %r from %s: %s", self.label, key, e)

        if results:
            self.notifier.notify(build_notification(repo_name, pr, results))
        logger.info("Review complete for %s: %d findings", key, sum(len(r.findings) for r in results))
        return record

    def _run_rubrics(self, repo_name: str, pr, raw_diff: str) -> list[RubricResult]:
        diff_map = parse_diff_positions(raw_diff)
        agent_diff = truncate_diff(raw_diff, self.config.get("max_diff_chars", 50000))

        results = []
        for i, rubric in enumerate(self.rubrics):
            if i:
                self.sleep(self.config.get("item_delay", 2.0))
            result = self._run_rubric(rubric, repo_name, pr, agent_diff)
            resolve_findings(result.findings, diff_map)
            results.append(result)
        return results

    def _run_rubric(self, rubric: Rubric, repo_name: str, pr, diff_text: str) -> RubricResult:
        logger.info("Running %s review on %s#%d", rubric.name, repo_name, pr.number)
        try:
            rubric_text = load_rubric_prompt(rubric, self.config.get("prompts_dir"))
            raw = self.agent.run(build_rubric_prompt(rubric_text, pr, repo_name, diff_text))
            response = parse_review_response(raw)
        except (AgentError, ValueError, OSError) as e:
            logger.error("%s review failed on %s#%d: %s", rubric.name, repo_name, pr.number, e)
            return RubricResult(rubric=rubric, error=str(e))

        logger.info("%s: %s, %d findings", rubric.name, response.status, len(response.findings))
        return RubricResult(rubric=rubric, response=response)

    def _post_results(self, repo, pr, sha: str, results: list[RubricResult]) -> None:
        all_entries = [(r.rubric, f) for r in results for f in r.findings]
        unplaced = [(rubric, f) for rubric, f in all_entries if f.position is None]
        inline = build_inline_comments(results)

        try:
            if inline:
                if not post_inline_review(repo, pr, sha, build_review_body(results, sha), inline):
                    post_comment(pr, build_fallback_body(all_entries))
                elif unplaced:
                    post_comment(pr, build_fallback_body(unplaced))
            elif all_entries:
                post_comment(pr, build_fallback_body(all_entries))
            elif any(r.response is not None for r in results):
                post_inline_review(repo, pr, sha, build_review_body(results, sha), [])
        except GithubException as e:
            logger.error("Could not post findings on PR #%d: %s", pr.number, e)

        try:
            post_comment(pr, build_summary_body(results, sha))
        except GithubException as e:
            logger.error("Could not post review summary on PR #%d: %s", pr.number, e)

    def _write_record(self, repo_name: str, pr, sha: str, results: list[RubricResult], previous) -> ReviewRecord:
        reviewed_at = utc_now()
        if previous is not None:
            old = parse_timestamp(previous.reviewed_at)
            if old is not None and old > parse_timestamp(reviewed_at):
                reviewed_at = previous.reviewed_at

        record = ReviewRecord(
            repo=repo_name,
            pr_number=pr.number,
            reviewed_at=reviewed_at,
            last_pr_update=_iso(pr.updated_at),
            commit_sha=sha,
            reviews=[r.outcome() for r in results],
            processed_comment_ids=list(previous.processed_comment_ids) if previous else [],
            rereview_requested=False,
        )
        self.store.set(repo_name, pr.number, record)
        return record
