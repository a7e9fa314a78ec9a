"""MCP tools for submitting analyses (face photo, medical report, risk assessment).

Uploads arrive as base64 text. Every tool returns the request outcome as
JSON: ``{"success": true, "data": ..., "analysisId"?, "saveWarning"?}`` or
``{"success": false, "error": ..., "errorKind": ...}``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from sehatscan.core.inference.models import Artifact

if TYPE_CHECKING:
    from sehatscan.domains.health.domain_logic.orchestrator import RequestOrchestrator

logger = logging.getLogger(__name__)


def decode_artifact(content_base64: str | None, filename: str, media_type: str) -> Artifact | None:
    """Decode a base64 upload (a ``data:`` URL prefix is allowed).

    Returns None when there is no content or it is not valid base64, so
    the validator reports it as a missing file.
    """
    if not content_base64 or not content_base64.strip():
        return None
    payload = content_base64.strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.info("Rejected upload %s: content is not valid base64", filename)
        return None
    return Artifact(filename=filename, media_type=media_type, content=content)


def register_analysis_tools(mcp: FastMCP, orchestrator: RequestOrchestrator) -> None:
    """Register analysis submission tools on the MCP server."""

    @mcp.tool
    async def analyze_face(
        ctx: Context,
        content_base64: str,
        filename: str = "face.jpg",
        media_type: str = "image/jpeg",
    ) -> str:
        """Analyze a face photo for visual health indicators (redness, yellowness, ...).

        The result is saved to your history. A copy of the image is archived
        when an archive is configured.

        Args:
            content_base64: The JPEG or PNG image, base64-encoded (max 10MB).
            filename: Original file name.
            media_type: ``image/jpeg`` or ``image/png``.
        """
        artifact = decode_artifact(content_base64, filename, media_type)
        outcome = await orchestrator.analyze_face(artifact)
        return json.dumps(outcome.to_dict())

    @mcp.tool
    async def analyze_report(
        ctx: Context,
        content_base64: str,
        filename: str = "report.pdf",
        media_type: str = "application/pdf",
    ) -> str:
        """Extract lab metrics from a medical report image or PDF.

        Args:
            content_base64: The JPEG, PNG or PDF file, base64-encoded (max 10MB).
            filename: Original file name.
            media_type: ``image/jpeg``, ``image/png`` or ``application/pdf``.
        """
        artifact = decode_artifact(content_base64, filename, media_type)
        outcome = await orchestrator.analyze_report(artifact)
        return json.dumps(outcome.to_dict())

    @mcp.tool
    async def generate_risk_assessment(
        ctx: Context,
        user_data: dict[str, Any],
        report_analysis_id: str = "",
        face_analysis_id: str = "",
    ) -> str:
        """Generate a health risk assessment from prior analyses plus your details.

        At least one of ``report_analysis_id`` or ``face_analysis_id`` is
        required; both must refer to your own saved analyses.

        Args:
            user_data: Form details such as age, sex, lifestyle and symptoms.
            report_analysis_id: Id of a saved report analysis.
            face_analysis_id: Id of a saved face analysis.
        """
        outcome = await orchestrator.generate_risk_assessment(
            report_analysis_id or None,
            face_analysis_id or None,
            user_data,
        )
        return json.dumps(outcome.to_dict())
