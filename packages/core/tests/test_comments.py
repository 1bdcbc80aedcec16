"""Tests for the comment cycle controller."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from github import GithubException

from prwatch_core.comments import Command, CommentController, parse_command
from prwatch_core.gh.pull_request import BOT_MARKER, BOT_PREFIX
from prwatch_core.providers.base import AgentError
from prwatch_store.json_file import JsonFileStore
from prwatch_store.models import ReviewRecord

SHA = "c" * 40

CONFIG = {
    "repos": ["owner/repo"],
    "base_branch": "dev",
    "bot_login": None,
    "allowed_authors": [],
    "project_dirs": {"owner/repo": "/src/repo"},
    "lint_commands": ["ruff check . --fix", "ruff format ."],
    "item_delay": 2.0,
    "rereview_label": "review",
}


def _at(minute):
    return datetime(2026, 3, 1, 12, minute, tzinfo=timezone.utc)


def _issue_comment(id_, body, minute=0, login="dev"):
    return SimpleNamespace(id=id_, body=body, user=SimpleNamespace(login=login, type="User"), created_at=_at(minute))


def _inline_comment(id_, body, minute=0, in_reply_to_id=None):
    return SimpleNamespace(
        id=id_,
        body=body,
        user=SimpleNamespace(login="dev", type="User"),
        created_at=_at(minute),
        path="app/db.py",
        line=12,
        original_line=12,
        diff_hunk="@@ -10,3 +10,4 @@\n+cursor.execute(f'SELECT {name}')",
        in_reply_to_id=in_reply_to_id,
    )


def _make_pr(issue=(), inline=()):
    pr = MagicMock()
    pr.number = 7
    pr.head = SimpleNamespace(sha=SHA, ref="feature/db")
    pr.get_issue_comments.return_value = list(issue)
    pr.get_review_comments.return_value = list(inline)
    return pr


def _make_record(processed=(), pr_number=7):
    return ReviewRecord(
        repo="owner/repo",
        pr_number=pr_number,
        reviewed_at="2026-03-01T10:00:00+00:00",
        last_pr_update="2026-03-01T10:00:00+00:00",
        commit_sha=SHA,
        processed_comment_ids=list(processed),
    )


@pytest.fixture
def env(tmp_path):
    store = JsonFileStore(path=str(tmp_path / "state.json"))
    store.set("owner/repo", 7, _make_record())
    agent = MagicMock()
    agent.supports_workdir = True
    agent.name = "ClaudeCodeAgent"
    notifier = MagicMock()
    sleep = MagicMock()
    client = MagicMock()
    controller = CommentController(dict(CONFIG), store, agent, notifier, client, sleep=sleep)
    return SimpleNamespace(controller=controller, store=store, agent=agent, notifier=notifier, sleep=sleep)


def _run(env, pr):
    env.controller.client.get_repo.return_value.get_pulls.return_value = [pr]
    return env.controller.run_cycle()


@pytest.mark.parametrize(
    "body,expected",
    [
        ("!review", Command.REVIEW),
        ("  !REVIEW \n", Command.REVIEW),
        ("!fix-lint", Command.FIX_LINT),
        ("!Fix-Lint", Command.FIX_LINT),
        ("!fix", Command.FIX),
        ("!fix use a parameterised query", Command.FIX),
        ("!fixed it already", Command.RESPOND),
        ("!review please", Command.RESPOND),
        ("why is this a problem?", Command.RESPOND),
        ("", Command.RESPOND),
    ],
)
def test_parse_command(body, expected):
    assert parse_command(body) is expected


class TestLedger:
    def test_only_new_comments_are_processed(self, env):
        env.store.set("owner/repo", 7, _make_record(processed=[1]))
        env.agent.run.return_value = "Sure."
        pr = _make_pr(issue=[_issue_comment(1, "old question", 1), _issue_comment(2, "new question", 2)])

        assert _run(env, pr) == 1

        assert env.agent.run.call_count == 1
        assert "new question" in env.agent.run.call_args.args[0]
        assert env.store.get("owner/repo", 7).processed_comment_ids == [1, 2]

    def test_replay_is_a_noop(self, env):
        env.agent.run.return_value = "Sure."
        pr = _make_pr(issue=[_issue_comment(5, "question")])

        _run(env, pr)
        assert _run(env, pr) == 0

        assert env.agent.run.call_count == 1
        assert pr.create_issue_comment.call_count == 1
        assert env.store.get("owner/repo", 7).processed_comment_ids == [5]

    def test_each_comment_is_persisted_before_the_next(self, env):
        ledgers = []

        def _answer(prompt, cwd=None):
            ledgers.append(env.store.get("owner/repo", 7).processed_comment_ids)
            return "ok"

        env.agent.run.side_effect = _answer
        pr = _make_pr(issue=[_issue_comment(20, "second", 5), _issue_comment(10, "first", 1)])

        _run(env, pr)

        # Handled oldest first; the first id is on disk before the second comment runs.
        assert ledgers == [[], [10]]
        assert env.store.get("owner/repo", 7).processed_comment_ids == [10, 20]
        env.sleep.assert_called_once_with(2.0)

    def test_untracked_pull_requests_are_skipped(self, env):
        pr = _make_pr(issue=[_issue_comment(1, "hello")])
        pr.number = 8

        assert _run(env, pr) == 0
        pr.get_issue_comments.assert_not_called()

    def test_bot_comments_are_ignored(self, env):
        pr = _make_pr(issue=[_issue_comment(1, BOT_PREFIX + "Fixed." + BOT_MARKER)])
        assert _run(env, pr) == 0
        env.agent.run.assert_not_called()

    def test_comment_fetch_failure_skips_pr(self, env):
        pr = _make_pr()
        pr.get_review_comments.side_effect = GithubException(502, {}, None)
        assert _run(env, pr) == 0

    def test_network_error_on_one_pr_does_not_stop_the_cycle(self, env):
        env.store.set("owner/repo", 8, _make_record(pr_number=8))
        env.agent.run.return_value = "Sure."
        flaky = _make_pr()
        flaky.get_review_comments.side_effect = requests.ConnectionError("reset by peer")
        healthy = _make_pr(issue=[_issue_comment(99, "question")])
        healthy.number = 8
        env.controller.client.get_repo.return_value.get_pulls.return_value = [flaky, healthy]

        assert env.controller.run_cycle() == 1
        assert env.store.get("owner/repo", 8).processed_comment_ids == [99]

    def test_unexpected_error_on_one_pr_is_logged(self, env, caplog):
        env.store.set("owner/repo", 8, _make_record(pr_number=8))
        env.agent.run.return_value = "Sure."
        broken = _make_pr()
        broken.get_issue_comments.side_effect = RuntimeError("boom")
        healthy = _make_pr(issue=[_issue_comment(99, "question")])
        healthy.number = 8
        env.controller.client.get_repo.return_value.get_pulls.return_value = [broken, healthy]

        assert env.controller.run_cycle() == 1
        assert "Failed to process comments on owner/repo#7" in caplog.text


class TestReviewCommand:
    def test_sets_flag_and_label(self, env):
        pr = _make_pr(issue=[_issue_comment(1, "!review")])

        _run(env, pr)

        record = env.store.get("owner/repo", 7)
        assert record.rereview_requested is True
        assert record.processed_comment_ids == [1]
        pr.add_to_labels.assert_called_once_with("review")
        env.agent.run.assert_not_called()

    def test_label_failure_still_sets_flag(self, env):
        pr = _make_pr(issue=[_issue_comment(1, "!review")])
        pr.add_to_labels.side_effect = GithubException(403, {}, None)

        _run(env, pr)

        assert env.store.get("owner/repo", 7).rereview_requested is True


class TestFixLint:
    def test_runs_lint_in_project_dir(self, env):
        env.agent.run.return_value = '{"commit": "' + "d" * 40 + '", "summary": "formatted 3 files"}'
        pr = _make_pr(issue=[_issue_comment(1, "!fix-lint")])

        _run(env, pr)

        prompt = env.agent.run.call_args.args[0]
        assert env.agent.run.call_args.kwargs["cwd"] == "/src/repo"
        assert 'branch "feature/db"' in prompt
        assert "ruff check . --fix" in prompt
        assert "ruff format ." in prompt
        body = pr.create_issue_comment.call_args.args[0]
        assert body.startswith(BOT_PREFIX + "Lint fixes applied in commit " + "d" * 40)
        assert body.endswith(BOT_MARKER)
        assert "https://github.com/owner/repo/commit/" + "d" * 40 in env.notifier.notify.call_args.args[0]

    def test_clean_code(self, env):
        env.agent.run.return_value = '{"commit": "none", "summary": "No lint issues found"}'
        pr = _make_pr(issue=[_issue_comment(1, "!fix-lint")])

        _run(env, pr)

        assert "No lint issues found" in pr.create_issue_comment.call_args.args[0]
        env.notifier.notify.assert_not_called()

    def test_without_project_dir_replies_and_records(self, env):
        env.controller.config["project_dirs"] = {}
        pr = _make_pr(issue=[_issue_comment(1, "!fix-lint")])

        _run(env, pr)

        env.agent.run.assert_not_called()
        assert "no project directory" in pr.create_issue_comment.call_args.args[0]
        assert env.store.get("owner/repo", 7).processed_comment_ids == [1]

    def test_agent_without_workdir_replies(self, env):
        env.agent.supports_workdir = False
        env.agent.name = "AnthropicAgent"
        pr = _make_pr(issue=[_issue_comment(1, "!fix-lint")])

        _run(env, pr)

        env.agent.run.assert_not_called()
        assert "AnthropicAgent cannot" in pr.create_issue_comment.call_args.args[0]


class TestFix:
    def test_fix_on_review_thread(self, env):
        env.agent.run.return_value = '{"commit": "' + "e" * 40 + '", "summary": "used a bound parameter"}'
        pr = _make_pr(inline=[_inline_comment(101, "!fix", in_reply_to_id=100)])
        pr.get_review_comment.return_value = SimpleNamespace(body="**[HIGH]** SQL built from user input")

        _run(env, pr)

        prompt = env.agent.run.call_args.args[0]
        assert "File: app/db.py" in prompt
        assert "Line: 12" in prompt
        assert "cursor.execute" in prompt
        assert "SQL built from user input" in prompt
        assert env.agent.run.call_args.kwargs["cwd"] == "/src/repo"
        pr.get_review_comment.assert_called_once_with(100)
        reply_id, reply = pr.create_review_comment_reply.call_args.args
        assert reply_id == 100
        assert "Fixed in commit " + "e" * 40 in reply
        assert "fix pushed" in env.notifier.notify.call_args.args[0]

    def test_failed_fix_is_still_processed(self, env, caplog):
        env.agent.run.side_effect = AgentError("claude exited with code 1")
        pr = _make_pr(inline=[_inline_comment(101, "!fix")])

        _run(env, pr)

        assert "Failed to handle comment 101" in caplog.text
        pr.create_review_comment_reply.assert_not_called()
        assert env.store.get("owner/repo", 7).processed_comment_ids == [101]

    def test_unknown_commit_is_reported(self, env):
        env.agent.run.return_value = "Pushed the fix."
        pr = _make_pr(issue=[_issue_comment(1, "!fix the timeout")])

        _run(env, pr)

        assert "Fixed in commit unknown." in pr.create_issue_comment.call_args.args[0]


class TestRespond:
    def test_general_comment_gets_plain_reply(self, env):
        env.agent.run.return_value = "Because the value reaches the shell unescaped."
        pr = _make_pr(issue=[_issue_comment(1, "Why is this flagged?")])

        _run(env, pr)

        args, kwargs = env.agent.run.call_args
        assert "Why is this flagged?" in args[0]
        assert "cwd" not in kwargs
        pr.create_issue_comment.assert_called_once_with(
            BOT_PREFIX + "Because the value reaches the shell unescaped." + BOT_MARKER
        )
        assert "replied to comment" in env.notifier.notify.call_args.args[0]

    def test_inline_comment_gets_threaded_reply(self, env):
        env.agent.run.return_value = "Good point."
        pr = _make_pr(inline=[_inline_comment(55, "Is this really exploitable?")])

        _run(env, pr)

        prompt = env.agent.run.call_args.args[0]
        assert "Code context:" in prompt
        pr.create_review_comment_reply.assert_called_once_with(55, BOT_PREFIX + "Good point." + BOT_MARKER)
        pr.get_review_comment.assert_not_called()

    def test_empty_answer_posts_nothing(self, env):
        env.agent.run.return_value = ""
        pr = _make_pr(issue=[_issue_comment(1, "thoughts?")])

        _run(env, pr)

        pr.create_issue_comment.assert_not_called()
        assert env.store.get("owner/repo", 7).processed_comment_ids == [1]
