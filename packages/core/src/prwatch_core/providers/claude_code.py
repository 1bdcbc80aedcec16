from __future__ import annotations

import os
import subprocess

from prwatch_core.providers.base import AgentError, AgentTimeoutError, BaseAgent

# Common install locations that a service manager's PATH tends to miss.
_EXTRA_PATH = ("/usr/local/bin", "/opt/homebrew/bin")


class ClaudeCodeAgent(BaseAgent):
    """Runs prompts through the Claude Code CLI (``claude -p``).

    The prompt goes in on stdin. When ``cwd`` is given the agent runs inside
    that checkout and may edit, commit and push, which is what fix commands
    rely on.
    """

    supports_workdir = True

    def __init__(self, claude_path: str = "claude", timeout: float = 300):
        super().__init__(timeout=timeout)
        self.claude_path = claude_path

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["PATH"] = os.pathsep.join([env.get("PATH", ""), *_EXTRA_PATH])
        return env

    def _call(self, prompt: str, cwd: str | None) -> str:
        try:
            # subprocess.run kills the child when the timeout expires.
            result = subprocess.run(
                [self.claude_path, "-p"],
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=cwd,
                env=self._env(),
            )
        except subprocess.TimeoutExpired as e:
            raise AgentTimeoutError(f"{self.claude_path} timed out after {self.timeout}s") from e
        except OSError as e:
            raise AgentError(f"Could not start {self.claude_path}: {e}") from e

        stdout = (result.stdout or "").strip()
        # A non-zero exit that still produced output is treated as an answer.
        if result.returncode == 0 or stdout:
            return stdout
        stderr = (result.stderr or "").strip()
        raise AgentError(stderr or f"{self.claude_path} exited with code {result.returncode}")
