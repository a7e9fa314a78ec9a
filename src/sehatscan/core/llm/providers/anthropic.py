"""Anthropic Claude provider."""

from __future__ import annotations

import time

from sehatscan.core.llm.provider import LLMProviderError, ProviderResponse


class AnthropicProvider:
    """Claude provider using the Anthropic SDK."""

    name = "anthropic"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5-20250929") -> None:
        import anthropic

        self._sdk = anthropic
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> ProviderResponse:
        start = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_message,
                messages=[{"role": "user", "content": user_message}],
            )
        except self._sdk.APIError as exc:
            raise LLMProviderError(f"Anthropic request failed: {exc}") from exc
        elapsed_ms = (time.monotonic() - start) * 1000

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not content.strip():
            raise LLMProviderError("Anthropic returned an empty reply")
        return ProviderResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
            latency_ms=elapsed_ms,
        )
