"""Health aggregator — cached digest of an owner's full analysis history."""

from __future__ import annotations

import logging

from sehatscan.core.storage.cache import Cache, cached, health_summary_key
from sehatscan.core.storage.repository import AnalysisRepository
from sehatscan.domains.health.domain_logic.digest import (
    DigestProfile,
    HealthDigest,
    build_digest,
    profile_line,
    render_digest,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_TTL_S = 15 * 60


class HealthAggregator:
    """Builds and caches the text digest injected into assistant prompts.

    The cached text is dropped whenever a new analysis is saved or one is
    deleted for the owner, so the next call recomputes from history.

    Usage::

        aggregator = HealthAggregator(repository, cache)
        text = aggregator.summarize("user-1", DigestProfile(name="Aisha"))
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        cache: Cache | None = None,
        *,
        ttl_s: float = DEFAULT_SUMMARY_TTL_S,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._ttl_s = ttl_s

    def build_digest(self, owner_id: str) -> HealthDigest:
        """Recompute the structured digest from every stored analysis."""
        analyses = self._repo.list_analyses(owner_id)
        digest = build_digest(analyses)
        logger.debug(
            "Digest for owner: %d analyses, %d metrics, %d trends",
            digest.total,
            len(digest.latest_metrics),
            len(digest.trends),
        )
        return digest

    def summarize(self, owner_id: str, profile: DigestProfile | None = None) -> str:
        """Rendered digest text, served from cache when fresh.

        Only the history body is cached; the profile line is rendered per call.
        """
        body = cached(
            self._cache,
            health_summary_key(owner_id),
            self._ttl_s,
            lambda: render_digest(self.build_digest(owner_id)),
        )
        if profile is None:
            return body
        return profile_line(profile) + "\n" + body
