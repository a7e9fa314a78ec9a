"""Shared test fixtures for SehatScan tests."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("ARCHIVE_UPLOAD_URL", "")
    monkeypatch.setenv("SEHAT_OWNER_ID", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

import httpx  # noqa: E402

from sehatscan.core.archive.client import ArchiveError, ArchivedArtifact  # noqa: E402
from sehatscan.core.identity.resolver import IdentityError, StaticIdentityResolver  # noqa: E402
from sehatscan.core.inference.gateway import InferenceGateway  # noqa: E402
from sehatscan.core.inference.models import Artifact  # noqa: E402


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from sehatscan.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from sehatscan.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def analysis_repository(health_db, field_encryptor):
    """Create an AnalysisRepository backed by in-memory SQLite."""
    from sehatscan.core.storage.repository import AnalysisRepository

    return AnalysisRepository(health_db, field_encryptor)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from sehatscan.core.audit.logger import AuditLogger

    return AuditLogger(health_db)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ttl_cache(health_db, clock):
    """SQLite TTL cache driven by a fake clock."""
    from sehatscan.core.storage.cache import SQLiteTTLCache

    return SQLiteTTLCache(health_db, clock=clock)


class RecordingCache:
    """Dict-backed cache that records every call and can be told to fail.

    ``fail`` raises ``CacheError``; ``error`` raises that exception type
    instead, for backends whose client errors leak through.
    """

    def __init__(self, *, fail: bool = False, error: type[Exception] | None = None) -> None:
        self.values: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail = fail or error is not None
        self.error = error

    def _record(self, op: str, key: str) -> None:
        from sehatscan.core.storage.cache import CacheError

        self.calls.append((op, key))
        if self.error is not None:
            raise self.error("cache down")
        if self.fail:
            raise CacheError("cache down")

    def get(self, key: str) -> Any | None:
        self._record("get", key)
        return self.values.get(key)

    def set_with_ttl(self, key: str, value: Any, ttl_s: float) -> None:
        self._record("set", key)
        self.values[key] = value

    def delete(self, key: str) -> None:
        self._record("delete", key)
        self.values.pop(key, None)


@pytest.fixture
def recording_cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def failing_cache() -> RecordingCache:
    return RecordingCache(fail=True)


@pytest.fixture
def broken_cache() -> RecordingCache:
    """Cache whose client raises a connection error on every call."""
    return RecordingCache(error=ConnectionError)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

OWNER_ID = "owner-1"


@pytest.fixture
def owner_id() -> str:
    return OWNER_ID


@pytest.fixture
def identity() -> StaticIdentityResolver:
    return StaticIdentityResolver(OWNER_ID, display_name="Aisha", member_since="2025-06-01")


class FailingIdentityResolver:
    """Identity provider that is down."""

    def resolve_caller(self):
        raise IdentityError("session expired")


@pytest.fixture
def no_identity() -> FailingIdentityResolver:
    return FailingIdentityResolver()


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

class FakeArchiver:
    """Archiver with a scripted outcome: succeed, fail, or hang for ``delay_s``."""

    def __init__(
        self,
        *,
        url: str = "https://archive.example/f/abc123",
        fail: bool = False,
        delay_s: float = 0.0,
    ) -> None:
        self.url = url
        self.fail = fail
        self.delay_s = delay_s
        self.calls: list[Artifact] = []
        self.cancelled = False

    async def archive(self, artifact: Artifact) -> ArchivedArtifact:
        self.calls.append(artifact)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.fail:
            raise ArchiveError("archive unavailable")
        return ArchivedArtifact(url=self.url, key="abc123", name=artifact.filename, size=artifact.size)


@pytest.fixture
def archiver() -> FakeArchiver:
    return FakeArchiver()


@pytest.fixture
def archiver_factory() -> type[FakeArchiver]:
    return FakeArchiver


# ---------------------------------------------------------------------------
# Inference service
# ---------------------------------------------------------------------------

FACE_RESULT: dict[str, Any] = {
    "visual_metrics": [{"redness_percentage": 12.5, "yellowness_percentage": 4.0}],
    "problems_detected": [{"type": "redness", "confidence": 0.7}],
    "treatments": ["Use a gentle cleanser"],
    "observations": "Mild redness on both cheeks",
}

REPORT_RESULT: dict[str, Any] = {
    "structured_data": {
        "report_type": "blood_test",
        "metrics": [
            {"name": "Glucose", "value": "126", "unit": "mg/dL", "status": "high"},
            {"name": "Hemoglobin", "value": "13.5", "unit": "g/dL", "status": "normal"},
            {"name": "Broken"},
        ],
    },
    "ocr_text": "GLUCOSE 126 mg/dL ...",
}

RISK_RESULT: dict[str, Any] = {
    "risk_assessment": (
        "## Summary\n"
        "**Overall Risk Level:** Moderate\n\n"
        "## Immediate Concerns\n"
        "- Elevated fasting glucose\n"
        "\n## Moderate Concerns\n"
        "- Mild facial redness\n"
    ),
}


class InferenceStub:
    """Scripted inference service for ``httpx.MockTransport``.

    ``responses`` maps a path to ``(status, json_body)``; ``delay_s`` makes
    every call slow; ``error`` raises a transport exception instead.
    """

    def __init__(self, responses: dict[str, tuple[int, Any]] | None = None) -> None:
        self.responses = responses or {
            "/analyze/face": (200, FACE_RESULT),
            "/analyze/report": (200, REPORT_RESULT),
            "/analyze/risk": (200, RISK_RESULT),
        }
        self.requests: list[httpx.Request] = []
        self.delay_s = 0.0
        self.error: type[httpx.TransportError] | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error("boom", request=request)
        status, body = self.responses.get(request.url.path, (404, {"detail": "Not Found"}))
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)


@pytest.fixture
def inference_stub() -> InferenceStub:
    return InferenceStub()


@pytest.fixture
def gateway(inference_stub) -> InferenceGateway:
    """Inference gateway talking to ``inference_stub`` through MockTransport."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(inference_stub))
    return InferenceGateway(http, base_url="http://inference.test")


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------

@pytest.fixture
def face_image() -> Artifact:
    return Artifact(filename="me.jpg", media_type="image/jpeg", content=b"\xff\xd8\xff" + b"x" * 64)


@pytest.fixture
def report_pdf() -> Artifact:
    return Artifact(filename="labs.pdf", media_type="application/pdf", content=b"%PDF-1.4 " + b"x" * 64)


@pytest.fixture
def face_result() -> dict[str, Any]:
    return FACE_RESULT


@pytest.fixture
def report_result() -> dict[str, Any]:
    return REPORT_RESULT


@pytest.fixture
def risk_result() -> dict[str, Any]:
    return RISK_RESULT
