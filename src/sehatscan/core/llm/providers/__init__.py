"""LLM provider implementations."""

from sehatscan.core.llm.providers.anthropic import AnthropicProvider
from sehatscan.core.llm.providers.mock import MockProvider
from sehatscan.core.llm.providers.openai import OpenAIProvider

__all__ = ["AnthropicProvider", "MockProvider", "OpenAIProvider"]
