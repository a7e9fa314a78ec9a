"""Upload checks that run before any network work.

Rules apply in a fixed order and the first failing rule wins: presence,
non-emptiness, size bounds, then media type.
"""

from __future__ import annotations

from dataclasses import dataclass

from sehatscan.core.inference.models import Artifact

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class ArtifactConstraints:
    """What one analysis kind accepts."""

    allowed_media_types: frozenset[str]
    type_message: str
    max_bytes: int = MAX_UPLOAD_BYTES
    min_bytes: int = 1

    def with_limits(self, *, max_bytes: int, min_bytes: int) -> ArtifactConstraints:
        return ArtifactConstraints(
            allowed_media_types=self.allowed_media_types,
            type_message=self.type_message,
            max_bytes=max_bytes,
            min_bytes=min_bytes,
        )


FACE_CONSTRAINTS = ArtifactConstraints(
    allowed_media_types=frozenset({"image/jpeg", "image/png"}),
    type_message="Please upload a JPEG or PNG image file",
)

REPORT_CONSTRAINTS = ArtifactConstraints(
    allowed_media_types=frozenset({"image/jpeg", "image/png", "application/pdf"}),
    type_message="Please upload a JPEG, PNG, or PDF file",
)


@dataclass(frozen=True)
class ValidationOutcome:
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.error is None


def _format_limit(max_bytes: int) -> str:
    mib = max_bytes / (1024 * 1024)
    if mib >= 1:
        return f"{mib:g}MB"
    return f"{max_bytes // 1024}KB" if max_bytes >= 1024 else f"{max_bytes} bytes"


def validate_artifact(artifact: Artifact | None, constraints: ArtifactConstraints) -> ValidationOutcome:
    """Check an upload against ``constraints``. Pure; no side effects."""
    if artifact is None:
        return ValidationOutcome("No file provided")
    if artifact.size == 0:
        return ValidationOutcome("File is empty")
    if artifact.size > constraints.max_bytes:
        return ValidationOutcome(
            f"File size must be less than {_format_limit(constraints.max_bytes)}"
        )
    if artifact.size < constraints.min_bytes:
        return ValidationOutcome("File is too small to be a valid upload")
    if artifact.media_type.strip().lower() not in constraints.allowed_media_types:
        return ValidationOutcome(constraints.type_message)
    return ValidationOutcome()
