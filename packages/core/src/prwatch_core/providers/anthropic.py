from __future__ import annotations

from prwatch_core.providers.base import AgentError, AgentTimeoutError, BaseAgent


class AnthropicAgent(BaseAgent):
    MODEL = "claude-sonnet-4-20250514"
    MAX_TOKENS = 4096
    # API calls fail transiently (rate limits, 5xx); a subprocess agent does not.
    MAX_RETRIES = 3
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, timeout: float = 300):
        super().__init__(timeout=timeout)
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this agent. "
                "Install it with: pip install 'prwatch[anthropic]'"
            )
        # max_retries=0: retries are handled by BaseAgent so timeouts are never retried.
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _call(self, prompt: str, cwd: str | None) -> str:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        import anthropic
        from anthropic.types import TextBlock

        try:
            response = self.client.messages.create(
                model=self.MODEL,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except anthropic.APITimeoutError as e:
            raise AgentTimeoutError(f"Anthropic API timed out after {self.timeout}s") from e
        except anthropic.APIError as e:
            raise AgentError(f"Anthropic API error: {e}") from e

        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
