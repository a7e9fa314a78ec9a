"""Data models for the analysis persistence layer.

Analyses are tagged by ``kind``; each variant carries its own structured
fields on top of the shared envelope.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

AnalysisKind = Literal["face", "report", "risk"]

ANALYSIS_KINDS: tuple[str, ...] = ("face", "report", "risk")


@dataclass
class LabMetric:
    """One structured lab value extracted from a report."""

    name: str
    value: str
    unit: str = ""
    status: str = "normal"  # 'normal' | 'low' | 'high' | 'critical'

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "status": self.status,
        }

    @classmethod
    def from_raw(cls, raw: Any) -> LabMetric | None:
        """Build from an inference metric entry; None if name or value is missing."""
        if not isinstance(raw, dict):
            return None
        name = raw.get("name")
        value = raw.get("value")
        if not name or value is None or value == "":
            return None
        return cls(
            name=str(name),
            value=str(value),
            unit=str(raw.get("unit") or ""),
            status=str(raw.get("status") or "normal").strip().lower(),
        )


@dataclass
class Analysis:
    """Shared envelope of one persisted inference outcome."""

    id: str
    owner_id: str
    kind: AnalysisKind
    raw_payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""  # ISO 8601, assigned at persistence time

    def details(self) -> dict[str, Any]:
        """Variant-specific fields, stored encrypted alongside the raw payload."""
        return {}


@dataclass
class FaceAnalysis(Analysis):
    kind: AnalysisKind = "face"
    visual_metrics: dict[str, Any] = field(default_factory=dict)
    problems_detected: list[Any] = field(default_factory=list)
    treatments: list[Any] = field(default_factory=list)

    def details(self) -> dict[str, Any]:
        return {
            "visual_metrics": self.visual_metrics,
            "problems_detected": self.problems_detected,
            "treatments": self.treatments,
        }


@dataclass
class ReportAnalysis(Analysis):
    kind: AnalysisKind = "report"
    structured_data: dict[str, Any] = field(default_factory=dict)
    structured_metrics: list[LabMetric] = field(default_factory=list)

    def details(self) -> dict[str, Any]:
        return {
            "structured_data": self.structured_data,
            "structured_metrics": [m.to_dict() for m in self.structured_metrics],
        }


@dataclass
class RiskAnalysis(Analysis):
    kind: AnalysisKind = "risk"
    narrative: str = ""
    report_analysis_id: str | None = None
    face_analysis_id: str | None = None

    def details(self) -> dict[str, Any]:
        return {
            "narrative": self.narrative,
            "report_analysis_id": self.report_analysis_id,
            "face_analysis_id": self.face_analysis_id,
        }


def build_analysis(
    *,
    kind: str,
    owner_id: str,
    raw_payload: dict[str, Any],
    details: dict[str, Any] | None = None,
    id: str = "",
    created_at: str = "",
) -> Analysis:
    """Construct the right variant for ``kind`` from stored detail fields."""
    details = details or {}
    if kind == "face":
        return FaceAnalysis(
            id=id,
            owner_id=owner_id,
            raw_payload=raw_payload,
            created_at=created_at,
            visual_metrics=_as_visual_metrics(details.get("visual_metrics")),
            problems_detected=list(details.get("problems_detected") or []),
            treatments=list(details.get("treatments") or []),
        )
    if kind == "report":
        metrics = [
            m for m in (LabMetric.from_raw(r) for r in details.get("structured_metrics") or [])
            if m is not None
        ]
        structured = details.get("structured_data")
        return ReportAnalysis(
            id=id,
            owner_id=owner_id,
            raw_payload=raw_payload,
            created_at=created_at,
            structured_data=structured if isinstance(structured, dict) else {},
            structured_metrics=metrics,
        )
    if kind == "risk":
        return RiskAnalysis(
            id=id,
            owner_id=owner_id,
            raw_payload=raw_payload,
            created_at=created_at,
            narrative=str(details.get("narrative") or ""),
            report_analysis_id=details.get("report_analysis_id"),
            face_analysis_id=details.get("face_analysis_id"),
        )
    raise ValueError(f"Unknown analysis kind: {kind!r}")


def _as_visual_metrics(value: Any) -> dict[str, Any]:
    # The face service sometimes wraps its metrics in a one-element list.
    if isinstance(value, list):
        value = value[0] if value else {}
    return dict(value) if isinstance(value, dict) else {}


@dataclass
class AnalysisPage:
    """One page of an owner's analysis history."""

    analyses: list[Analysis]
    total: int
    page: int
    total_pages: int


@dataclass
class StoredMetricReading:
    """A denormalized lab metric reading for time-series queries."""

    id: str
    analysis_id: str
    name: str
    value: str
    unit: str = ""
    status: str = ""
    observed_at: str = ""
