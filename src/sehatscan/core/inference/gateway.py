"""Inference gateway — one deadline-bound call per analysis kind.

Uploads (face, report) are sent as multipart ``file`` fields; risk
requests are JSON bodies. Every outcome, including transport failures
and malformed bodies, comes back as a ``RequestOutcome``. Exceptions not
raised by the transport (programming errors) propagate to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from sehatscan.core.inference.models import DEFAULT_PROFILES, Artifact, InferenceProfile
from sehatscan.core.results.outcome import NETWORK_MESSAGE, RequestOutcome

logger = logging.getLogger(__name__)


class InferenceGateway:
    """Client for the external inference service.

    Usage::

        async with httpx.AsyncClient() as http:
            gateway = InferenceGateway(http, base_url="http://127.0.0.1:8000")
            outcome = await gateway.invoke("face", artifact)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        profiles: Mapping[str, InferenceProfile] | None = None,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._profiles = dict(profiles or DEFAULT_PROFILES)

    def profile(self, kind: str) -> InferenceProfile:
        try:
            return self._profiles[kind]
        except KeyError:
            raise ValueError(f"Unknown inference kind: {kind!r}") from None

    async def invoke(
        self,
        kind: str,
        body: Artifact | dict[str, Any],
        timeout_s: float | None = None,
    ) -> RequestOutcome:
        """Issue exactly one call to the ``kind`` endpoint and normalize the result.

        Args:
            kind: ``face``, ``report`` or ``risk``.
            body: The uploaded artifact, or the JSON payload for ``risk``.
            timeout_s: Deadline override; defaults to the kind's profile.
        """
        profile = self.profile(kind)
        deadline = profile.timeout_s if timeout_s is None else timeout_s

        try:
            response = await asyncio.wait_for(self._send(profile, body), timeout=deadline)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("%s inference timed out after %.1fs", kind, deadline)
            return RequestOutcome.fail(profile.timeout_message, "timeout")
        except (httpx.HTTPError, OSError) as exc:
            logger.error("%s inference network error: %s", kind, exc)
            return RequestOutcome.fail(NETWORK_MESSAGE, "network")

        if not response.is_success:
            return self._map_http_error(profile, response)
        return self._decode_success(profile, response)

    async def _send(self, profile: InferenceProfile, body: Artifact | dict[str, Any]) -> httpx.Response:
        url = f"{self._base_url}{profile.path}"
        if isinstance(body, Artifact):
            files = {"file": (body.filename, body.content, body.media_type)}
            return await self._http.post(url, files=files)
        return await self._http.post(url, json=body)

    def _map_http_error(self, profile: InferenceProfile, response: httpx.Response) -> RequestOutcome:
        status = response.status_code
        message = _detail(response) or profile.service_error_message(status)

        if status == 400:
            kind = "validation"
            message = profile.bad_request_message or message
        elif status == 422 and profile.unprocessable_message:
            kind = "validation"
            message = profile.unprocessable_message
        elif status == 429:
            kind = "rate_limit"
            message = profile.rate_limit_message
        elif status >= 500:
            kind = "service"
            message = profile.unavailable_message
        else:
            kind = "service"

        logger.error("%s inference HTTP %d: %s", profile.kind, status, message)
        return RequestOutcome.fail(message, kind)

    def _decode_success(self, profile: InferenceProfile, response: httpx.Response) -> RequestOutcome:
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("%s inference response parsing failed: %s", profile.kind, exc)
            return RequestOutcome.fail(profile.invalid_response_message, "service")

        if not isinstance(data, dict) or (
            profile.required_key is not None and not data.get(profile.required_key)
        ):
            logger.error("%s inference returned an invalid structure", profile.kind)
            return RequestOutcome.fail(profile.invalid_results_message, "service")

        return RequestOutcome.ok(data)


def _detail(response: httpx.Response) -> str | None:
    """The service's ``detail`` string, if the body carries one."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(body, dict) and isinstance(body.get("detail"), str) and body["detail"]:
        return body["detail"]
    return None
