"""Mock LLM provider for offline use and tests."""

from __future__ import annotations

from sehatscan.core.llm.provider import LLMProviderError, ProviderResponse


class MockProvider:
    """Returns a canned reply and records what it was asked.

    Set ``fail_with`` to make every call raise ``LLMProviderError``.
    """

    name = "mock"

    def __init__(
        self,
        response_content: str = "Based on your recent results, keep tracking your metrics.",
        fail_with: str | None = None,
    ) -> None:
        self.response_content = response_content
        self.fail_with = fail_with
        self.last_system_message: str = ""
        self.last_user_message: str = ""
        self.call_count: int = 0

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> ProviderResponse:
        self.last_system_message = system_message
        self.last_user_message = user_message
        self.call_count += 1
        if self.fail_with is not None:
            raise LLMProviderError(self.fail_with)
        return ProviderResponse(
            content=self.response_content,
            input_tokens=len(system_message.split()) + len(user_message.split()),
            output_tokens=len(self.response_content.split()),
            model="mock",
            latency_ms=0.0,
        )
