"""Integration tests for the SehatScan health MCP server."""

from __future__ import annotations

import asyncio
import base64
import json

import pytest
from fastmcp import Client

from sehatscan.core.llm.providers.mock import MockProvider
from sehatscan.core.server.app import SERVER_NAME, create_app
from sehatscan.core.storage.database import HealthDatabase


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text of a tool result."""
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "analyze_face",
    "analyze_report",
    "generate_risk_assessment",
    "health_summary",
    "list_analyses",
    "user_stats",
    "delete_analysis",
    "metric_trend",
    "ask_health_assistant",
    "audit_summary",
]


@pytest.fixture
def database():
    db = HealthDatabase(":memory:")
    yield db
    db.close()


@pytest.fixture
def provider() -> MockProvider:
    return MockProvider("Your glucose is above the usual range.")


@pytest.fixture
def client(database, gateway, identity, archiver, provider):
    """MCP client connected to a server with scripted inference and archive."""
    mcp = create_app(
        database_override=database,
        gateway_override=gateway,
        identity_override=identity,
        archiver_override=archiver,
        llm_provider_override=provider,
    )
    return Client(mcp)


@pytest.fixture
def anonymous_client(database, gateway, no_identity):
    mcp = create_app(
        database_override=database,
        gateway_override=gateway,
        identity_override=no_identity,
        llm_provider_override=MockProvider(),
    )
    return Client(mcp)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


JPEG = b"\xff\xd8\xff" + b"x" * 64
PDF = b"%PDF-1.4 " + b"x" * 64


def test_server_lists_all_tools(client):
    async def _check():
        async with client:
            tool_names = [t.name for t in await client.list_tools()]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check(client):
    async def _check():
        async with client:
            data = _payload(await client.call_tool("health_check", {}))
            assert data["status"] == "ok"
            assert data["server"] == SERVER_NAME
            assert data["archive_enabled"] is True
            assert data["assistant_provider"] == "mock"
            assert data["analyses_stored"] == 0
    _run(_check())


def test_face_analysis_end_to_end(client, archiver, inference_stub):
    async def _check():
        async with client:
            outcome = _payload(await client.call_tool(
                "analyze_face", {"content_base64": _b64(JPEG), "filename": "me.jpg"}
            ))
            assert outcome["success"] is True
            assert outcome["analysisId"]
            assert outcome["data"]["source_image_url"] == archiver.url

            listing = _payload(await client.call_tool("list_analyses", {}))
            assert [a["kind"] for a in listing["data"]["analyses"]] == ["face"]

            health = _payload(await client.call_tool("health_check", {}))
            assert health["analyses_stored"] == 1
    _run(_check())
    assert [r.url.path for r in inference_stub.requests] == ["/analyze/face"]


def test_invalid_upload_is_a_validation_failure(client, inference_stub):
    async def _check():
        async with client:
            outcome = _payload(await client.call_tool(
                "analyze_face", {"content_base64": "%%%", "filename": "me.jpg"}
            ))
            assert outcome == {"success": False, "error": "No file provided", "errorKind": "validation"}
    _run(_check())
    assert inference_stub.requests == []


def test_report_then_risk_then_summary(client):
    async def _check():
        async with client:
            report = _payload(await client.call_tool(
                "analyze_report",
                {"content_base64": _b64(PDF), "filename": "labs.pdf", "media_type": "application/pdf"},
            ))
            assert report["success"] is True

            risk = _payload(await client.call_tool(
                "generate_risk_assessment",
                {"user_data": {"age": 41, "sex": "female"}, "report_analysis_id": report["analysisId"]},
            ))
            assert risk["success"] is True
            assert "Overall Risk Level" in risk["data"]["risk_assessment"]

            stats = _payload(await client.call_tool("user_stats", {}))
            assert stats["data"]["byKind"] == {"face": 0, "report": 1, "risk": 1}

            trend = _payload(await client.call_tool("metric_trend", {"metric_name": "glucose"}))
            assert [r["value"] for r in trend["data"]["readings"]] == ["126"]

            summary = _payload(await client.call_tool("health_summary", {"include_details": True}))
            assert summary["data"]["summary"].startswith("USER: Aisha")
            assert "LATEST RISK" in summary["data"]["summary"]
            assert summary["data"]["digest"]["totalAnalyses"] == 2
    _run(_check())


def test_assistant_and_audit_trail(client, provider):
    async def _check():
        async with client:
            answer = _payload(await client.call_tool(
                "ask_health_assistant", {"question": "How is my glucose?"}
            ))
            assert answer["success"] is True
            assert answer["data"]["answer"].startswith("Your glucose is above the usual range.")
            assert "No health data available yet" in provider.last_system_message

            audit = _payload(await client.call_tool("audit_summary", {"days": 7}))
            assert audit["data"]["total_events"] == 1
            assert audit["data"]["llm_disclosures"] == 0
            assert audit["data"]["recent_events"][0]["operation"] == "ask_health_assistant"
    _run(_check())


def test_delete_analysis_round_trip(client):
    async def _check():
        async with client:
            face = _payload(await client.call_tool("analyze_face", {"content_base64": _b64(JPEG)}))
            deleted = _payload(await client.call_tool("delete_analysis", {"analysis_id": face["analysisId"]}))
            assert deleted["data"]["deleted"] is True

            again = _payload(await client.call_tool("delete_analysis", {"analysis_id": face["analysisId"]}))
            assert again["errorKind"] == "not_found"
    _run(_check())


@pytest.mark.parametrize(
    "tool, args",
    [
        ("analyze_face", {"content_base64": _b64(JPEG)}),
        ("list_analyses", {}),
        ("health_summary", {}),
        ("ask_health_assistant", {"question": "Hi?"}),
    ],
)
def test_unauthenticated_calls_fail_with_auth(anonymous_client, inference_stub, tool, args):
    async def _check():
        async with anonymous_client:
            outcome = _payload(await anonymous_client.call_tool(tool, args))
            assert outcome["success"] is False
            assert outcome["errorKind"] == "auth"
            assert outcome["error"] == "Authentication required. Please log in again."
    _run(_check())
    assert inference_stub.requests == []
