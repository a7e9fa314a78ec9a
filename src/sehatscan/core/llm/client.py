"""Assistant LLM client — prompt assembly, provider call and guardrails."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sehatscan.core.llm.provider import LLMProvider, ProviderResponse
from sehatscan.core.llm.response import check_guardrails, enforce_disclaimer, sanitize_content
from sehatscan.core.llm.system_prompt import build_full_system_prompt

logger = logging.getLogger(__name__)


@dataclass
class ChatTurn:
    role: str  # 'user' | 'assistant'
    content: str


@dataclass
class LLMResponse:
    """Guarded reply from the assistant LLM."""

    content: str
    model: str
    guardrail_flags: list[str] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)


def render_user_message(question: str, history: list[ChatTurn]) -> str:
    """Fold prior turns and the new question into one user message."""
    if not history:
        return question
    lines = ["CONVERSATION SO FAR:"]
    for turn in history:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    lines.extend(["", f"NEW QUESTION: {question}"])
    return "\n".join(lines)


class HealthLLMClient:
    """Invokes the assistant LLM with the health digest as context.

    Provider errors propagate; callers decide how to report them.
    """

    def __init__(self, provider: LLMProvider) -> None:
        self.provider = provider

    async def invoke(
        self,
        health_summary: str,
        question: str,
        history: list[ChatTurn] | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> LLMResponse:
        provider_response: ProviderResponse = await self.provider.generate(
            system_message=build_full_system_prompt(health_summary),
            user_message=render_user_message(question, history or []),
            max_tokens=max_tokens,
            temperature=temperature,
        )

        logger.info(
            "Assistant LLM call: model=%s, tokens=%d+%d, latency=%.0fms",
            provider_response.model,
            provider_response.input_tokens,
            provider_response.output_tokens,
            provider_response.latency_ms,
        )

        guardrail_check = check_guardrails(provider_response.content)
        content = sanitize_content(provider_response.content, guardrail_check)
        if not guardrail_check.passed:
            logger.warning(
                "Guardrails enforced: %d prohibited patterns redacted",
                len(guardrail_check.phrases),
            )

        content, appended = enforce_disclaimer(content)
        flags = list(guardrail_check.flags)
        if appended:
            flags.append("disclaimer_appended")

        return LLMResponse(
            content=content,
            model=provider_response.model,
            guardrail_flags=flags,
            usage={
                "input_tokens": provider_response.input_tokens,
                "output_tokens": provider_response.output_tokens,
            },
        )
