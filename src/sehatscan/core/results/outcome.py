"""Result contract shared by every public operation.

A ``RequestOutcome`` is either a success carrying ``data`` (plus an
optional ``analysis_id`` or ``save_warning``) or a failure carrying a
user-facing ``error`` message and an ``error_kind`` from the closed
taxonomy below. The two shapes never mix.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, get_args

ErrorKind = Literal[
    "validation",
    "auth",
    "network",
    "timeout",
    "rate_limit",
    "service",
    "not_found",
    "database",
    "unexpected",
]

ERROR_KINDS: frozenset[str] = frozenset(get_args(ErrorKind))

# Fixed user-facing messages for failures that must not leak internals.
AUTH_REQUIRED_MESSAGE = "Authentication required. Please log in again."
UNEXPECTED_MESSAGE = "An unexpected error occurred. Please try again."
NETWORK_MESSAGE = (
    "Unable to connect to analysis service. "
    "Please check your connection and try again."
)
SAVE_WARNING_MESSAGE = "Analysis completed but couldn't be saved to your history"
RISK_SAVE_WARNING_MESSAGE = "Risk assessment completed but couldn't be saved to your history"


class OutcomeError(ValueError):
    """Raised when a RequestOutcome would violate the success/failure split."""


@dataclass(frozen=True)
class RequestOutcome:
    """Discriminated success/failure response."""

    success: bool
    data: Any = None
    analysis_id: str | None = None
    save_warning: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    def __post_init__(self) -> None:
        if self.success:
            if self.error is not None or self.error_kind is not None:
                raise OutcomeError("A success outcome cannot carry an error")
            if self.analysis_id is not None and self.save_warning is not None:
                raise OutcomeError("analysis_id and save_warning are mutually exclusive")
        else:
            if self.data is not None or self.analysis_id is not None:
                raise OutcomeError("A failure outcome cannot carry data")
            if self.save_warning is not None:
                raise OutcomeError("A failure outcome cannot carry a save warning")
            if not self.error:
                raise OutcomeError("A failure outcome needs an error message")
            if self.error_kind not in ERROR_KINDS:
                raise OutcomeError(f"Unknown error kind: {self.error_kind!r}")

    @classmethod
    def ok(
        cls,
        data: Any,
        *,
        analysis_id: str | None = None,
        save_warning: str | None = None,
    ) -> RequestOutcome:
        return cls(
            success=True,
            data=data,
            analysis_id=analysis_id,
            save_warning=save_warning,
        )

    @classmethod
    def fail(cls, error: str, error_kind: ErrorKind) -> RequestOutcome:
        return cls(success=False, error=error, error_kind=error_kind)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape, omitting fields that do not apply."""
        if not self.success:
            return {"success": False, "error": self.error, "errorKind": self.error_kind}

        payload: dict[str, Any] = {"success": True, "data": self.data}
        if self.analysis_id is not None:
            payload["analysisId"] = self.analysis_id
        if self.save_warning is not None:
            payload["saveWarning"] = self.save_warning
        return payload
