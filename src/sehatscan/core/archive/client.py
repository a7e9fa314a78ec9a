"""Source artifact archive — keeps a durable copy of uploaded face images.

The archive endpoint accepts a multipart ``file`` upload and answers with
either a bare object or a ``{"data": {...}}`` envelope carrying ``url``
(or ``ufsUrl``), and optionally ``key``, ``name`` and ``size``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from sehatscan.core.inference.models import Artifact

logger = logging.getLogger(__name__)


class ArchiveError(Exception):
    """Raised when an artifact could not be archived."""


@dataclass(frozen=True)
class ArchivedArtifact:
    url: str
    key: str | None = None
    name: str | None = None
    size: int | None = None

    def source_fields(self) -> dict[str, Any]:
        """Fields merged into an inference payload for the archived source image."""
        fields: dict[str, Any] = {"source_image_url": self.url}
        if self.key:
            fields["source_image_key"] = self.key
        if self.name:
            fields["source_image_name"] = self.name
        if self.size is not None:
            fields["source_image_size"] = self.size
        return fields


class ArtifactArchiver(Protocol):
    async def archive(self, artifact: Artifact) -> ArchivedArtifact: ...


class HttpArtifactArchiver:
    """Uploads artifacts to an HTTP archive endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, *, upload_url: str, token: str = "") -> None:
        self._http = http_client
        self._upload_url = upload_url
        self._token = token

    async def archive(self, artifact: Artifact) -> ArchivedArtifact:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        files = {"file": (artifact.filename, artifact.content, artifact.media_type)}
        try:
            response = await self._http.post(self._upload_url, files=files, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise ArchiveError(f"Archive upload failed: {exc}") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ArchiveError("Archive response was not JSON") from exc

        archived = parse_archive_response(body)
        if archived is None:
            raise ArchiveError("Archive response carried no URL")
        logger.info("Archived %s (%d bytes)", artifact.filename, artifact.size)
        return archived


def parse_archive_response(body: Any) -> ArchivedArtifact | None:
    """Normalize an archive response; None when it has no usable URL."""
    if isinstance(body, list):
        body = body[0] if body else None
    if not isinstance(body, dict):
        return None
    data = body.get("data", body)
    if not isinstance(data, dict):
        return None

    url = data.get("url") or data.get("ufsUrl")
    if not isinstance(url, str) or not url:
        return None

    key = data.get("key")
    name = data.get("name")
    size = data.get("size")
    return ArchivedArtifact(
        url=url,
        key=key if isinstance(key, str) else None,
        name=name if isinstance(name, str) else None,
        size=size if isinstance(size, int) and not isinstance(size, bool) else None,
    )
