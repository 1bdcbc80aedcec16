from __future__ import annotations

try:
    import openai as _openai
except ImportError:
    _openai = None  # type: ignore[assignment]

from prwatch_core.providers.base import AgentError, AgentTimeoutError, BaseAgent


class OpenAIAgent(BaseAgent):
    MODEL = "gpt-4o"
    MAX_TOKENS = 4096
    MAX_RETRIES = 3
    # Lower than Anthropic's 0.3 to lean toward strictly structured JSON output.
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, timeout: float = 300):
        super().__init__(timeout=timeout)
        if _openai is None:
            raise ImportError(
                "The 'openai' package is required for this agent. Install it with: pip install 'prwatch[openai]'"
            )
        self.client = _openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _call(self, prompt: str, cwd: str | None) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.MODEL,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except _openai.APITimeoutError as e:
            raise AgentTimeoutError(f"OpenAI API timed out after {self.timeout}s") from e
        except _openai.APIError as e:
            raise AgentError(f"OpenAI API error: {e}") from e
        return (response.choices[0].message.content or "").strip()
