"""Health assistant — answers questions with the owner's digest as context."""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any

from sehatscan.core.audit.logger import AuditLogger
from sehatscan.core.llm.client import ChatTurn, HealthLLMClient
from sehatscan.core.llm.provider import LLMProviderError
from sehatscan.core.results.outcome import UNEXPECTED_MESSAGE, RequestOutcome
from sehatscan.core.storage.database import DatabaseError
from sehatscan.core.storage.repository import RepositoryError
from sehatscan.domains.health.domain_logic.digest import DigestProfile
from sehatscan.domains.health.domain_logic.health_aggregator import HealthAggregator

logger = logging.getLogger(__name__)

MAX_HISTORY_TURNS = 10
MAX_QUESTION_CHARS = 2000

ASSISTANT_UNAVAILABLE_MESSAGE = (
    "The health assistant is temporarily unavailable. Please try again later."
)
CONTEXT_FAILED_MESSAGE = "Failed to load your health data"


def coerce_history(raw: Any) -> list[ChatTurn]:
    """Keep well-formed turns only, then the most recent ``MAX_HISTORY_TURNS``."""
    if not isinstance(raw, list):
        return []
    turns = [
        ChatTurn(role=item["role"], content=item["content"].strip())
        for item in raw
        if isinstance(item, dict)
        and item.get("role") in ("user", "assistant")
        and isinstance(item.get("content"), str)
        and item["content"].strip()
    ]
    return turns[-MAX_HISTORY_TURNS:]


class HealthAssistant:
    """Question answering over the cached health digest.

    Usage::

        assistant = HealthAssistant(aggregator, HealthLLMClient(provider), provider_name="anthropic")
        outcome = await assistant.ask("user-1", "Is my glucose improving?")
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        llm_client: HealthLLMClient,
        *,
        provider_name: str = "mock",
        audit: AuditLogger | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._llm = llm_client
        self._provider_name = provider_name
        self._audit = audit

    @property
    def discloses_data(self) -> bool:
        """Whether the digest leaves this machine when the assistant is asked."""
        return self._provider_name != "mock"

    async def ask(
        self,
        owner_id: str,
        question: str,
        history: Any = None,
        profile: DigestProfile | None = None,
    ) -> RequestOutcome:
        start = time.monotonic()
        question = (question or "").strip()
        if not question:
            return RequestOutcome.fail("Please enter a question", "validation")
        if len(question) > MAX_QUESTION_CHARS:
            return RequestOutcome.fail(
                f"Question must be at most {MAX_QUESTION_CHARS} characters", "validation"
            )

        try:
            summary = self._aggregator.summarize(owner_id, profile)
        except (RepositoryError, DatabaseError, sqlite3.Error):
            logger.exception("Failed to build assistant context")
            return RequestOutcome.fail(CONTEXT_FAILED_MESSAGE, "database")

        disclosed = self.discloses_data
        try:
            response = await self._llm.invoke(summary, question, coerce_history(history))
        except LLMProviderError as exc:
            logger.error("Assistant provider failed: %s", exc)
            self._audit_call(owner_id, question, disclosed, start, status="failure", error_kind="service")
            return RequestOutcome.fail(ASSISTANT_UNAVAILABLE_MESSAGE, "service")
        except Exception:
            logger.exception("Assistant call crashed")
            self._audit_call(owner_id, question, disclosed, start, status="failure", error_kind="unexpected")
            return RequestOutcome.fail(UNEXPECTED_MESSAGE, "unexpected")

        self._audit_call(owner_id, question, disclosed, start)
        return RequestOutcome.ok({
            "answer": response.content,
            "model": response.model,
            "guardrailFlags": response.guardrail_flags,
        })

    def _audit_call(
        self,
        owner_id: str,
        question: str,
        disclosed: bool,
        start: float,
        *,
        status: str = "success",
        error_kind: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_assistant_call(
            owner_id=owner_id,
            question=question,
            llm_provider=self._provider_name,
            llm_disclosed=disclosed,
            status=status,
            error_kind=error_kind,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
