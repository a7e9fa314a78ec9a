"""LLM provider protocol — abstract interface for assistant LLM calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class LLMProviderError(Exception):
    """Raised when a provider call fails (transport, auth, quota or empty reply)."""


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    latency_ms: float


@runtime_checkable
class LLMProvider(Protocol):
    """Abstract interface for assistant LLM calls."""

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> ProviderResponse: ...


DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4o",
}


def create_provider(provider_name: str, api_key: str = "", model: str = "") -> LLMProvider:
    """Build the assistant provider called ``provider_name``.

    ``model`` falls back to the provider's entry in ``DEFAULT_MODELS``.
    SDK imports happen here so the mock provider needs neither SDK.
    """
    if provider_name == "mock":
        from sehatscan.core.llm.providers.mock import MockProvider

        return MockProvider()
    if provider_name not in DEFAULT_MODELS:
        raise ValueError(f"Unknown LLM provider: {provider_name}")

    model = model or DEFAULT_MODELS[provider_name]
    if provider_name == "anthropic":
        from sehatscan.core.llm.providers.anthropic import AnthropicProvider

        return AnthropicProvider(api_key=api_key, model=model)

    from sehatscan.core.llm.providers.openai import OpenAIProvider

    return OpenAIProvider(api_key=api_key, model=model)
