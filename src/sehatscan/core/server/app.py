"""SehatScan health MCP server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import dataclasses
import logging

import httpx
from fastmcp import FastMCP

from sehatscan.core.archive.client import ArtifactArchiver, HttpArtifactArchiver
from sehatscan.core.audit.logger import AuditLogger
from sehatscan.core.config.settings import Settings, get_settings
from sehatscan.core.identity.resolver import IdentityResolver, StaticIdentityResolver
from sehatscan.core.inference.gateway import InferenceGateway
from sehatscan.core.inference.models import FACE_PROFILE, REPORT_PROFILE, RISK_PROFILE
from sehatscan.core.llm.client import HealthLLMClient
from sehatscan.core.llm.provider import LLMProvider, create_provider
from sehatscan.core.storage.cache import Cache, CacheError, SQLiteTTLCache
from sehatscan.core.storage.database import HealthDatabase
from sehatscan.core.storage.encryption import FieldEncryptor
from sehatscan.core.storage.repository import AnalysisRepository, RepositoryError
from sehatscan.domains.health.domain_logic.archiving import SideUploadCoordinator
from sehatscan.domains.health.domain_logic.artifact_validator import (
    FACE_CONSTRAINTS,
    REPORT_CONSTRAINTS,
)
from sehatscan.domains.health.domain_logic.assistant import HealthAssistant
from sehatscan.domains.health.domain_logic.health_aggregator import HealthAggregator
from sehatscan.domains.health.domain_logic.history import AnalysisHistory
from sehatscan.domains.health.domain_logic.orchestrator import RequestOrchestrator
from sehatscan.domains.health.domain_logic.persistence import PersistenceCoordinator
from sehatscan.domains.health.tools.analysis_tools import register_analysis_tools
from sehatscan.domains.health.tools.assistant_tools import register_assistant_tools
from sehatscan.domains.health.tools.audit_tools import register_audit_tools
from sehatscan.domains.health.tools.history_tools import register_history_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "SehatScan Health"
SERVER_VERSION = "0.1.0"


def _build_gateway(settings: Settings, http_client: httpx.AsyncClient) -> InferenceGateway:
    profiles = {
        "face": dataclasses.replace(
            FACE_PROFILE,
            path=settings.inference_face_path,
            timeout_s=settings.inference_face_timeout_s,
        ),
        "report": dataclasses.replace(
            REPORT_PROFILE,
            path=settings.inference_report_path,
            timeout_s=settings.inference_report_timeout_s,
        ),
        "risk": dataclasses.replace(
            RISK_PROFILE,
            path=settings.inference_risk_path,
            timeout_s=settings.inference_risk_timeout_s,
        ),
    }
    return InferenceGateway(http_client, base_url=settings.inference_base_url, profiles=profiles)


def _build_database(settings: Settings) -> tuple[HealthDatabase, FieldEncryptor]:
    if settings.encryption_key:
        previous = [k.strip() for k in settings.encryption_previous_keys.split(",") if k.strip()]
        encryptor = FieldEncryptor(settings.encryption_key, previous)
        database = HealthDatabase(settings.db_path)
    else:
        logger.warning(
            "No ENCRYPTION_KEY configured — using an in-memory store with a throwaway key. "
            "Analyses will be lost on restart."
        )
        encryptor = FieldEncryptor(FieldEncryptor.generate_key())
        database = HealthDatabase(":memory:")
    database.initialize()
    logger.info(
        "Analysis store initialized: %s (schema v%d)",
        settings.db_path if settings.encryption_key else ":memory:",
        database.get_schema_version(),
    )
    return database, encryptor


def _select_provider(settings: Settings) -> tuple[str, str, str]:
    if settings.llm_provider == "mock":
        return "mock", "", ""
    if settings.llm_provider == "anthropic":
        api_key, model = settings.anthropic_api_key, settings.anthropic_model
    elif settings.llm_provider == "openai":
        api_key, model = settings.openai_api_key, settings.openai_model
    else:  # pragma: no cover
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")

    if not api_key:
        logger.warning(
            "No API key configured for provider '%s'; falling back to mock provider",
            settings.llm_provider,
        )
        return "mock", "", ""
    return settings.llm_provider, api_key, model


def create_app(
    *,
    database_override: HealthDatabase | None = None,
    encryptor_override: FieldEncryptor | None = None,
    gateway_override: InferenceGateway | None = None,
    identity_override: IdentityResolver | None = None,
    archiver_override: ArtifactArchiver | None = None,
    cache_override: Cache | None = None,
    llm_provider_override: LLMProvider | None = None,
) -> FastMCP:
    """Create and configure the SehatScan health MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the encrypted analysis store, cache and audit log
    3. Wires the inference gateway and the optional image archive
    4. Builds the request orchestrator, history, aggregator and assistant
    5. Registers all tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "SehatScan personal health server. Analyzes face photos and medical "
            "reports, generates risk assessments from saved analyses, keeps an "
            "encrypted history, and answers questions about your own results."
        ),
    )

    # --- Storage ---
    if database_override is not None:
        database = database_override
        database.initialize()
        encryptor = encryptor_override or FieldEncryptor(FieldEncryptor.generate_key())
    else:
        database, encryptor = _build_database(settings)
        if encryptor_override is not None:
            encryptor = encryptor_override

    repository = AnalysisRepository(database, encryptor)
    try:
        repository.reencrypt_all()
    except RepositoryError:
        logger.error("Key rotation pass failed; retired keys still decrypt old rows", exc_info=True)
    audit_logger = AuditLogger(database)

    cache: Cache | None
    if cache_override is not None:
        cache = cache_override
    elif settings.cache_enabled:
        ttl_cache = SQLiteTTLCache(database)
        try:
            purged = ttl_cache.purge_expired()
            logger.info("Purged %d expired cache entries", purged)
        except CacheError:
            logger.warning("Expired cache purge failed", exc_info=True)
        cache = ttl_cache
    else:
        cache = None
        logger.info("Cache disabled; every read recomputes")

    # --- Inference and archiving ---
    http_client: httpx.AsyncClient | None = None
    if gateway_override is not None:
        gateway = gateway_override
    else:
        http_client = httpx.AsyncClient()
        gateway = _build_gateway(settings, http_client)
        logger.info("Inference gateway configured for %s", settings.inference_base_url)

    archiver: ArtifactArchiver | None
    if archiver_override is not None:
        archiver = archiver_override
    elif settings.archive_upload_url:
        archiver = HttpArtifactArchiver(
            http_client or httpx.AsyncClient(),
            upload_url=settings.archive_upload_url,
            token=settings.archive_token,
        )
        logger.info("Source image archive enabled")
    else:
        archiver = None

    # --- Identity ---
    identity = identity_override or StaticIdentityResolver(
        settings.sehat_owner_id,
        display_name=settings.sehat_owner_name,
        member_since=settings.sehat_owner_since,
    )

    # --- Domain services ---
    face_constraints = FACE_CONSTRAINTS.with_limits(
        max_bytes=settings.upload_max_bytes, min_bytes=settings.upload_min_bytes
    )
    report_constraints = REPORT_CONSTRAINTS.with_limits(
        max_bytes=settings.upload_max_bytes, min_bytes=settings.upload_min_bytes
    )
    orchestrator = RequestOrchestrator(
        gateway=gateway,
        identity=identity,
        repository=repository,
        persistence=PersistenceCoordinator(repository, cache),
        side_upload=SideUploadCoordinator(archiver, grace_s=settings.archive_grace_s),
        audit=audit_logger,
        face_constraints=face_constraints,
        report_constraints=report_constraints,
    )
    history = AnalysisHistory(
        repository,
        cache,
        stats_ttl_s=settings.cache_ttl_stats_s,
        analyses_ttl_s=settings.cache_ttl_analyses_s,
        audit=audit_logger,
    )
    aggregator = HealthAggregator(repository, cache, ttl_s=settings.cache_ttl_health_summary_s)

    # --- Health assistant LLM ---
    if llm_provider_override is not None:
        provider = llm_provider_override
        provider_name = getattr(provider, "name", type(provider).__name__)
    else:
        provider_name, api_key, model = _select_provider(settings)
        provider = create_provider(provider_name=provider_name, api_key=api_key, model=model)
    assistant = HealthAssistant(
        aggregator,
        HealthLLMClient(provider),
        provider_name=provider_name,
        audit=audit_logger,
    )

    # --- Register tools ---
    @server.tool
    async def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "inference_base_url": settings.inference_base_url,
            "archive_enabled": archiver is not None,
            "cache_enabled": cache is not None,
            "assistant_provider": provider_name,
            "analyses_stored": repository.count_all(),
        }

    register_analysis_tools(server, orchestrator)
    register_history_tools(server, identity, history, aggregator)
    register_assistant_tools(server, identity, assistant)
    register_audit_tools(server, audit_logger)
    logger.info("Analysis, history, assistant and audit tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
