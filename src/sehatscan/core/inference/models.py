"""Request-side models for the external inference service."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Artifact:
    """An uploaded byte payload with its declared media type."""

    filename: str
    media_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class InferenceProfile:
    """Endpoint, deadline and user-facing failure messages for one analysis kind.

    ``bad_request_message`` and ``unprocessable_message`` replace the
    service's ``detail`` text for 400 and 422 responses when set; a kind
    without ``unprocessable_message`` treats 422 like any other status.
    """

    kind: str
    path: str
    timeout_s: float
    timeout_message: str
    error_prefix: str = "Analysis service error"
    rate_limit_message: str = "Service is busy. Please try again in a few moments."
    unavailable_message: str = (
        "Analysis service is temporarily unavailable. Please try again later."
    )
    invalid_response_message: str = (
        "Invalid response from analysis service. Please try again."
    )
    invalid_results_message: str = "Invalid analysis results. Please try again."
    bad_request_message: str | None = None
    unprocessable_message: str | None = None
    # Top-level key a successful body must carry to count as a result
    required_key: str | None = None

    def service_error_message(self, status_code: int) -> str:
        return f"{self.error_prefix} ({status_code})"


FACE_PROFILE = InferenceProfile(
    kind="face",
    path="/analyze/face",
    timeout_s=30.0,
    timeout_message="Request timed out. Please try again with a smaller image.",
)

REPORT_PROFILE = InferenceProfile(
    kind="report",
    path="/analyze/report",
    timeout_s=60.0,
    timeout_message=(
        "Request timed out. OCR processing can take time for large files. "
        "Please try again with a smaller or clearer image."
    ),
    unprocessable_message=(
        "Unable to process this file. Please ensure it's a clear, readable medical report."
    ),
)

RISK_PROFILE = InferenceProfile(
    kind="risk",
    path="/analyze/risk",
    timeout_s=45.0,
    timeout_message="Risk assessment is taking longer than expected. Please try again.",
    error_prefix="Risk assessment service error",
    rate_limit_message="AI service is busy. Please try again in a few moments.",
    unavailable_message=(
        "Risk assessment service is temporarily unavailable. Please try again later."
    ),
    invalid_response_message=(
        "Invalid response from health check service. Please try again."
    ),
    invalid_results_message="Invalid health check results. Please try again.",
    bad_request_message=(
        "Invalid data provided for health check. Please check your selected analyses."
    ),
    required_key="risk_assessment",
)

DEFAULT_PROFILES: dict[str, InferenceProfile] = {
    p.kind: p for p in (FACE_PROFILE, REPORT_PROFILE, RISK_PROFILE)
}
