import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_RUBRICS: list[dict] = [
    {"name": "security", "label": "Security", "prompt": "security-review.md"},
    {"name": "code-quality", "label": "Code Quality", "prompt": "code-quality-review.md"},
    {"name": "test-quality", "label": "Test Quality", "prompt": "test-quality-review.md"},
]

DEFAULT_CONFIG: dict = {
    "repos": [],  # owner/name entries to watch
    "base_branch": "dev",  # only PRs targeting this branch; None = any base
    "poll_interval": 180,  # seconds between the start of consecutive ticks
    "agent": "claude-code",  # claude-code | anthropic | openai
    "claude_path": "claude",
    "agent_timeout": 300,  # hard wall-clock limit per agent invocation, seconds
    "store": "json",  # json | sqlite
    "state_file": "review-state.json",
    "store_path": ".prwatch.db",
    "prompts_dir": None,  # None = built-in rubric prompts
    "rubrics": DEFAULT_RUBRICS,
    "max_diff_chars": 50000,
    "item_delay": 2.0,  # pause between rubric runs and between comments, seconds
    "retention_days": 30,
    "rereview_label": "review",
    "bot_login": None,  # account the reviewer posts as; its comments are ignored
    "allowed_authors": [],  # if set, only these logins can issue commands
    "project_dirs": {},  # owner/name -> local checkout used by fix commands
    "lint_commands": ["ruff check . --fix", "ruff format ."],
    "log_file": "prwatch.log",
    "debug": False,
}

AGENTS = ("claude-code", "anthropic", "openai")

BUILTIN_PROMPTS_DIR = Path(__file__).parent / "prompts"


@dataclass
class Rubric:
    """A named review criterion and the prompt file that defines it."""

    name: str
    label: str
    prompt: str  # file name, relative to the prompts directory unless absolute


def _parse_project_dirs(raw: str) -> dict[str, str]:
    """Parse ``owner/repo=/path,owner/other=/path2`` into a dict."""
    dirs = {}
    for entry in raw.split(","):
        repo, _, path = entry.partition("=")
        if repo.strip() and path.strip():
            dirs[repo.strip()] = path.strip()
    return dirs


def load_config(config_path: str = ".prwatch.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwatch.yml in the current directory
      3. GITHUB_REPOS / PROJECT_DIRS / PRWATCH_DEBUG environment variables
      4. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "repos": list(DEFAULT_CONFIG["repos"]),
        "rubrics": [dict(r) for r in DEFAULT_RUBRICS],
        "allowed_authors": [],
        "project_dirs": {},
        "lint_commands": list(DEFAULT_CONFIG["lint_commands"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    env_repos = os.environ.get("GITHUB_REPOS")
    if env_repos:
        config["repos"] = [r.strip() for r in env_repos.split(",") if r.strip()]

    env_dirs = os.environ.get("PROJECT_DIRS")
    if env_dirs:
        config["project_dirs"] = {**(config.get("project_dirs") or {}), **_parse_project_dirs(env_dirs)}

    if os.environ.get("PRWATCH_DEBUG") == "1":
        config["debug"] = True

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["discord_bot_token"] = os.environ.get("DISCORD_BOT_TOKEN")
    config["discord_channel_id"] = os.environ.get("DISCORD_CHANNEL_ID")

    return config


def validate_config(config: dict) -> list[str]:
    """Return a list of configuration problems (empty if the config is usable)."""
    errors = []

    if not config.get("repos"):
        errors.append("No repositories configured (set GITHUB_REPOS or repos: in .prwatch.yml)")

    agent = config.get("agent")
    if agent not in AGENTS:
        errors.append(f"Unknown agent {agent!r}. Choose one of: {', '.join(AGENTS)}")
    if agent == "anthropic" and not config.get("anthropic_api_key"):
        errors.append("ANTHROPIC_API_KEY environment variable is not set")
    if agent == "openai" and not config.get("openai_api_key"):
        errors.append("OPENAI_API_KEY environment variable is not set")

    if not config.get("rubrics"):
        errors.append("No rubrics configured")

    if (config.get("poll_interval") or 0) <= 0:
        errors.append("poll_interval must be a positive number of seconds")
    if (config.get("agent_timeout") or 0) <= 0:
        errors.append("agent_timeout must be a positive number of seconds")

    return errors


def load_rubrics(config: dict) -> list[Rubric]:
    """Build the ordered rubric list. Order here is the order rubrics run in."""
    rubrics = []
    for raw in config.get("rubrics") or []:
        name = raw["name"]
        rubrics.append(
            Rubric(
                name=name,
                label=raw.get("label") or name.replace("-", " ").title(),
                prompt=raw.get("prompt") or f"{name}-review.md",
            )
        )
    return rubrics


def load_rubric_prompt(rubric: Rubric, prompts_dir: Optional[str] = None) -> str:
    """
    Load the prompt template for a rubric.

    Looks in ``prompts_dir`` first (relative to cwd), then in the built-in
    prompts shipped with prwatch.
    """
    candidates = []
    if prompts_dir:
        candidates.append(Path(prompts_dir) / rubric.prompt)
    candidates.append(BUILTIN_PROMPTS_DIR / rubric.prompt)

    for p in candidates:
        if p.exists():
            return p.read_text()

    raise FileNotFoundError(f"Prompt file not found for rubric {rubric.name!r}: {rubric.prompt}")
