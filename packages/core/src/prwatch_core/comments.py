"""Comment cycle: follow-up commands and replies on reviewed pull requests.

Commands are matched on the trimmed, lower-cased comment body:

    !review     request a fresh review pass
    !fix-lint   run the configured lint fixers over the branch and push
    !fix ...    fix the single finding the comment is attached to
    (anything)  answer the comment in context

Each comment is handled at most once. Its id is appended to the pull
request's ledger and persisted right after it is handled, so a restart never
replays a comment that was recorded.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

import requests
from github import GithubException

from prwatch_core.findings import parse_commit_response
from prwatch_core.gh.pull_request import (
    BOT_MARKER,
    BOT_PREFIX,
    PRComment,
    add_label,
    get_repo,
    list_open_pulls,
    list_user_comments,
    post_comment,
    reply_to_comment,
)
from prwatch_store.models import ReviewRecord, record_key

logger = logging.getLogger(__name__)


class Command(Enum):
    REVIEW = "review"
    FIX_LINT = "fix-lint"
    FIX = "fix"
    RESPOND = "respond"


def parse_command(body: str) -> Command:
    text = body.strip().lower()
    if text == "!review":
        return Command.REVIEW
    if text == "!fix-lint":
        return Command.FIX_LINT
    tokens = text.split()
    if tokens and tokens[0] == "!fix":
        return Command.FIX
    return Command.RESPOND


def build_lint_prompt(branch: str, project_dir: str, lint_commands: list[str]) -> str:
    steps = [f"git checkout {branch} && git pull origin {branch}"]
    steps += [f'Run "{cmd}" from {project_dir}' for cmd in lint_commands]
    steps += [
        "Check for changes with git status",
        'If there are changes, commit them with the message "style: auto-fix lint issues" and push to origin',
        'If there were NO changes, respond with ONLY: {"commit": "none", "summary": "No lint issues found"}',
        'Otherwise respond with ONLY a JSON object: {"commit": "full_40_char_sha", "summary": "what was fixed"}',
    ]
    numbered = "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))
    header = f'You are fixing lint issues on branch "{branch}" in the project at {project_dir}.'
    return f"{header}\n\nInstructions:\n{numbered}"


def build_fix_prompt(branch: str, comment: PRComment, finding_text: str | None) -> str:
    parts = [
        f'You are fixing ONE specific code review finding on branch "{branch}".\n',
        "IMPORTANT: Fix ONLY the issue described below. Do not fix anything else, "
        "even if you notice it. Make the minimum change necessary.\n",
    ]
    if comment.path:
        parts.append(f"File: {comment.path}")
    if comment.line:
        parts.append(f"Line: {comment.line}")
    if comment.diff_hunk:
        parts.append(f"\nRelevant code:\n```\n{comment.diff_hunk}\n```")
    if finding_text:
        parts.append(f"\nThe review finding to fix:\n{finding_text}")
    parts.append(f"\nDeveloper said: {comment.body}\n")
    parts.append(
        "Instructions:\n"
        f"1. git checkout {branch} && git pull origin {branch}\n"
        f"2. Fix ONLY the issue above in {comment.path or 'the relevant file'}.\n"
        '3. Commit with the message "fix: <brief description of the single fix>"\n'
        "4. Push to origin\n"
        '5. Respond with ONLY a JSON object: {"commit": "full_sha", "summary": "one sentence describing the fix"}'
    )
    return "\n".join(parts)


def build_response_prompt(comment: PRComment, finding_text: str | None) -> str:
    parts = ["You are a code reviewer responding to a developer's comment on a pull request.\n"]
    if comment.path:
        parts.append(f"File: {comment.path}")
    if comment.line:
        parts.append(f"Line: {comment.line}")
    if comment.diff_hunk:
        parts.append(f"\nCode context:\n```\n{comment.diff_hunk}\n```")
    if finding_text:
        parts.append(f"\nOriginal review finding:\n{finding_text}")
    parts.append(f"\nDeveloper's comment:\n{comment.body}\n")
    parts.append(
        "Respond naturally and concisely. No emojis.\n"
        "- If they asked a question, answer it directly.\n"
        "- If they disagree, engage with their reasoning.\n"
        "- If they suggest an alternative, evaluate it honestly.\n"
        "- If they acknowledge the finding, respond briefly.\n"
        '- If a code change would help, suggest it and mention they can reply with "!fix".'
    )
    return "\n".join(parts)


class CommentController:
    def __init__(self, config: dict, store, agent, notifier, client, sleep=time.sleep):
        self.config = config
        self.store = store
        self.agent = agent
        self.notifier = notifier
        self.client = client
        self.sleep = sleep
        self.label = config.get("rereview_label", "review")

    def run_cycle(self) -> int:
        """Handle new comments on every tracked pull request. Returns the number handled."""
        handled = 0
        for repo_name in self.config.get("repos", []):
            try:
                repo = get_repo(self.client, repo_name)
                pulls = list_open_pulls(repo, self.config.get("base_branch"))
            except (GithubException, requests.RequestException) as e:
                logger.error("Could not list pull requests for %s: %s", repo_name, e)
                continue

            for pr in pulls:
                record = self.store.get(repo_name, pr.number)
                if record is None:
                    continue
                try:
                    handled += self.process_pull(repo_name, pr, record)
                except Exception:
                    logger.exception("Failed to process comments on %s", record_key(repo_name, pr.number))
        return handled

    def process_pull(self, repo_name: str, pr, record: ReviewRecord) -> int:
        key = record_key(repo_name, pr.number)
        try:
            comments = list_user_comments(
                pr,
                bot_login=self.config.get("bot_login"),
                allowed_authors=self.config.get("allowed_authors") or (),
            )
        except (GithubException, requests.RequestException) as e:
            logger.error("Could not fetch comments for %s: %s", key, e)
            return 0

        new = [c for c in comments if not record.has_processed(c.id)]
        if not new:
            return 0
        logger.info("Found %d new comment(s) on %s", len(new), key)

        for i, comment in enumerate(new):
            if i:
                self.sleep(self.config.get("item_delay", 2.0))
            self.handle_comment(repo_name, pr, comment, record)
            record.mark_processed(comment.id)
            self.store.set(repo_name, pr.number, record)
        return len(new)

    def handle_comment(self, repo_name: str, pr, comment: PRComment, record: ReviewRecord) -> None:
        """Run the action for one comment. Failures are logged; the caller still records the comment."""
        command = parse_command(comment.body)
        logger.info("%s command from %s on %s#%d", command.value, comment.author, repo_name, pr.number)
        try:
            if command is Command.REVIEW:
                self._handle_review(pr, record)
            elif command is Command.FIX_LINT:
                self._handle_fix_lint(repo_name, pr, comment)
            elif command is Command.FIX:
                self._handle_fix(repo_name, pr, comment)
            else:
                self._handle_response(repo_name, pr, comment)
        except Exception:
            logger.exception("Failed to handle comment %d on %s#%d", comment.id, repo_name, pr.number)

    def _reply(self, pr, comment: PRComment, body: str) -> None:
        if comment.is_inline:
            # GitHub threads replies under the top-level comment only.
            reply_to_comment(pr, comment.in_reply_to_id or comment.id, body)
        else:
            post_comment(pr, BOT_PREFIX + body + BOT_MARKER)

    def _finding_text(self, pr, comment: PRComment) -> str | None:
        """Text of the review comment a reply is attached to, if any."""
        if not comment.is_inline or not comment.in_reply_to_id:
            return None
        try:
            return pr.get_review_comment(comment.in_reply_to_id).body
        except GithubException as e:
            logger.warning("Could not fetch parent comment %d: %s", comment.in_reply_to_id, e)
            return None

    def _workdir(self, repo_name: str, pr, comment: PRComment) -> str | None:
        """Return the checkout to run a fix in, or reply with the reason none is available."""
        project_dir = (self.config.get("project_dirs") or {}).get(repo_name)
        if not project_dir:
            self._reply(pr, comment, f"Fix commands are not enabled for {repo_name}: no project directory is set.")
            return None
        if not self.agent.supports_workdir:
            self._reply(pr, comment, f"Fix commands need an agent that works in a checkout; {self.agent.name} cannot.")
            return None
        return project_dir

    def _handle_review(self, pr, record: ReviewRecord) -> None:
        record.rereview_requested = True
        try:
            add_label(pr, self.label)
        except GithubException as e:
            logger.warning("Could not add label %r to PR #%d: %s", self.label, pr.number, e)

    def _handle_fix_lint(self, repo_name: str, pr, comment: PRComment) -> None:
        project_dir = self._workdir(repo_name, pr, comment)
        if project_dir is None:
            return
        prompt = build_lint_prompt(pr.head.ref, project_dir, self.config.get("lint_commands") or [])
        result = parse_commit_response(self.agent.run(prompt, cwd=project_dir))

        if result["commit"] == "none":
            post_comment(pr, BOT_PREFIX + "No lint issues found. The code is already clean." + BOT_MARKER)
            return
        body = f"Lint fixes applied in commit {result['commit']}.\n\n{result['summary']}"
        post_comment(pr, BOT_PREFIX + body + BOT_MARKER)
        self.notifier.notify(
            f"**PR #{pr.number}** lint fixes pushed\n> {result['summary']}\n"
            f"https://github.com/{repo_name}/commit/{result['commit']}"
        )

    def _handle_fix(self, repo_name: str, pr, comment: PRComment) -> None:
        project_dir = self._workdir(repo_name, pr, comment)
        if project_dir is None:
            return
        prompt = build_fix_prompt(pr.head.ref, comment, self._finding_text(pr, comment))
        result = parse_commit_response(self.agent.run(prompt, cwd=project_dir))

        self._reply(pr, comment, f"Fixed in commit {result['commit']}.\n\n{result['summary']}")
        self.notifier.notify(
            f"**PR #{pr.number}** fix pushed\n> {result['summary']}\n"
            f"https://github.com/{repo_name}/commit/{result['commit']}"
        )

    def _handle_response(self, repo_name: str, pr, comment: PRComment) -> None:
        response = self.agent.run(build_response_prompt(comment, self._finding_text(pr, comment)))
        if not response:
            logger.warning("Agent returned an empty response to comment %d", comment.id)
            return

        self._reply(pr, comment, response)
        preview = comment.body[:80].replace("\n", " ")
        self.notifier.notify(
            f"**PR #{pr.number}** replied to comment\n> {preview}\nhttps://github.com/{repo_name}/pull/{pr.number}"
        )
