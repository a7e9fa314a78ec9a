"""Health digest — bounded, trend-aware summary of an owner's analysis history.

Pure functions over already-loaded analyses. The rendered text is
line-oriented and capped (metrics, abnormal findings, trends) so its size
does not grow with history length.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from sehatscan.core.storage.models import Analysis, FaceAnalysis, ReportAnalysis, RiskAnalysis
from sehatscan.domains.health.domain_logic.risk_narrative import (
    extract_key_concerns,
    extract_risk_level,
    truncate,
)

logger = logging.getLogger(__name__)

MAX_METRIC_LINES = 15
MAX_ABNORMAL_LINES = 15
MAX_TREND_LINES = 10
MAX_RISK_CONCERNS = 3
STABLE_EPSILON = 0.01

TrendDirection = Literal["improving", "worsening", "stable"]

NO_DATA_LINES = (
    "HEALTH DATA: No health data available yet.",
    "SUGGESTION: Encourage the user to:",
    "- Upload a blood test or lab report in 'Scan Report'",
    "- Take a facial health analysis in 'Scan Face'",
    "- Generate a comprehensive Risk Assessment",
)

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


@dataclass(frozen=True)
class MetricObservation:
    """One lab value tagged with the date of the report it came from."""

    name: str
    value: str
    unit: str
    status: str
    observed_at: datetime

    @property
    def key(self) -> str:
        return self.name.lower()

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "status": self.status,
            "observedAt": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class Trend:
    name: str
    earliest_value: str
    latest_value: str
    unit: str
    direction: TrendDirection

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "earliestValue": self.earliest_value,
            "latestValue": self.latest_value,
            "unit": self.unit,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class DigestProfile:
    name: str = ""
    member_since: str = ""


@dataclass
class HealthDigest:
    """Derived view of one owner's history. Never persisted."""

    total: int = 0
    report_count: int = 0
    face_count: int = 0
    risk_count: int = 0
    oldest: datetime | None = None
    newest: datetime | None = None
    latest_metrics: dict[str, MetricObservation] = field(default_factory=dict)
    abnormal_findings: list[MetricObservation] = field(default_factory=list)
    trends: list[Trend] = field(default_factory=list)
    latest_face_summary: str | None = None
    latest_risk_summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAnalyses": self.total,
            "counts": {
                "report": self.report_count,
                "face": self.face_count,
                "risk": self.risk_count,
            },
            "oldest": self.oldest.isoformat() if self.oldest else None,
            "newest": self.newest.isoformat() if self.newest else None,
            "latestMetrics": [m.to_dict() for m in self.latest_metrics.values()],
            "abnormalFindings": [m.to_dict() for m in self.abnormal_findings],
            "trends": [t.to_dict() for t in self.trends],
            "latestFaceSummary": self.latest_face_summary,
            "latestRiskSummary": self.latest_risk_summary,
        }


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_timestamp(value: str) -> datetime:
    """ISO 8601 to an aware datetime (naive input is taken as UTC)."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def leading_number(value: str) -> float | None:
    """Numeric prefix of a lab value ("126 mg/dL" -> 126.0); None if there is none."""
    match = _LEADING_NUMBER.match(value)
    if not match:
        return None
    number = float(match.group(1))
    return number if math.isfinite(number) else None


def format_date(dt: datetime) -> str:
    return f"{dt:%b} {dt.day}, {dt.year}"


# ---------------------------------------------------------------------------
# Algorithm steps
# ---------------------------------------------------------------------------

def flatten_metrics(reports: list[ReportAnalysis]) -> list[MetricObservation]:
    """Every structured metric across ``reports``, tagged with its report's date."""
    observations: list[MetricObservation] = []
    for report in reports:
        observed_at = parse_timestamp(report.created_at)
        for metric in report.structured_metrics:
            observations.append(MetricObservation(
                name=metric.name,
                value=metric.value,
                unit=metric.unit,
                status=metric.status or "normal",
                observed_at=observed_at,
            ))
    return observations


def latest_by_name(observations: list[MetricObservation]) -> dict[str, MetricObservation]:
    """One entry per case-insensitive name holding its most recent observation.

    Keys keep the order in which each name was first seen; a later
    observation replaces the value only when strictly newer.
    """
    latest: dict[str, MetricObservation] = {}
    for obs in observations:
        existing = latest.get(obs.key)
        if existing is None or obs.observed_at > existing.observed_at:
            latest[obs.key] = obs
    return latest


def trend_direction(
    earliest_value: float,
    latest_value: float,
    earliest_status: str,
    latest_status: str,
) -> TrendDirection:
    diff = latest_value - earliest_value
    earliest_normal = earliest_status == "normal"
    latest_normal = latest_status == "normal"

    if abs(diff) < STABLE_EPSILON:
        return "stable"
    if latest_normal and not earliest_normal:
        return "improving"
    if not latest_normal and earliest_normal:
        return "worsening"
    if latest_normal and earliest_normal:
        return "stable"
    # Both abnormal: without reference ranges, use the latest status label
    # to guess which way is healthy.
    if diff > 0:
        return "improving" if latest_status == "low" else "worsening"
    return "improving" if latest_status == "high" else "worsening"


def compute_trends(observations: list[MetricObservation]) -> list[Trend]:
    """Earliest-vs-latest direction for every metric seen at two or more distinct times."""
    groups: dict[str, list[MetricObservation]] = {}
    for obs in observations:
        groups.setdefault(obs.key, []).append(obs)

    trends: list[Trend] = []
    for entries in groups.values():
        if len({e.observed_at for e in entries}) < 2:
            continue
        ordered = sorted(entries, key=lambda e: e.observed_at)
        earliest, latest = ordered[0], ordered[-1]

        earliest_value = leading_number(earliest.value)
        latest_value = leading_number(latest.value)
        if earliest_value is None or latest_value is None:
            continue

        trends.append(Trend(
            name=latest.name,
            earliest_value=earliest.value,
            latest_value=latest.value,
            unit=latest.unit,
            direction=trend_direction(earliest_value, latest_value, earliest.status, latest.status),
        ))
    return trends


def summarize_face(face: FaceAnalysis) -> str:
    parts = [f"LATEST FACE ({format_date(parse_timestamp(face.created_at))}):"]
    metrics = face.visual_metrics
    if metrics.get("redness_percentage") is not None:
        parts.append(f"Redness {metrics['redness_percentage']}%")
    if metrics.get("yellowness_percentage") is not None:
        parts.append(f"Yellowness {metrics['yellowness_percentage']}%")

    notes = [
        truncate(str(face.raw_payload[k]), 80)
        for k in ("observations", "recommendations")
        if face.raw_payload.get(k)
    ]
    if notes:
        parts.append(", ".join(notes))
    return " | ".join(parts)


def summarize_risk(risk: RiskAnalysis) -> str:
    parts = [f"LATEST RISK ({format_date(parse_timestamp(risk.created_at))}):"]
    try:
        level = extract_risk_level(risk.narrative)
        concerns = extract_key_concerns(risk.narrative, MAX_RISK_CONCERNS)
    except Exception:
        logger.warning("Risk narrative extraction failed for %s", risk.id, exc_info=True)
        level, concerns = None, []
    if level:
        parts.append(level)
    if concerns:
        parts.append(", ".join(concerns))
    return " | ".join(parts)


def build_digest(analyses: list[Analysis]) -> HealthDigest:
    """Compute the digest from an owner's full history (any order)."""
    ordered = sorted(analyses, key=lambda a: parse_timestamp(a.created_at), reverse=True)
    if not ordered:
        return HealthDigest()

    reports = [a for a in ordered if isinstance(a, ReportAnalysis)]
    faces = [a for a in ordered if isinstance(a, FaceAnalysis)]
    risks = [a for a in ordered if isinstance(a, RiskAnalysis)]

    observations = flatten_metrics(reports)
    latest = latest_by_name(observations)

    return HealthDigest(
        total=len(ordered),
        report_count=len(reports),
        face_count=len(faces),
        risk_count=len(risks),
        oldest=parse_timestamp(ordered[-1].created_at),
        newest=parse_timestamp(ordered[0].created_at),
        latest_metrics=latest,
        abnormal_findings=[m for m in latest.values() if m.status != "normal"],
        trends=compute_trends(observations),
        latest_face_summary=summarize_face(faces[0]) if faces else None,
        latest_risk_summary=summarize_risk(risks[0]) if risks else None,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def profile_line(profile: DigestProfile) -> str:
    since = "Unknown"
    if profile.member_since:
        try:
            since = format_date(parse_timestamp(profile.member_since))
        except ValueError:
            since = profile.member_since
    return f"USER: {profile.name or 'User'} (member since {since})"


def _metric_line(m: MetricObservation) -> str:
    status_tag = "normal" if m.status == "normal" else m.status.upper()
    return f"- {m.name}: {m.value} {m.unit} [{status_tag}] ({format_date(m.observed_at)})"


def render_digest(digest: HealthDigest, profile: DigestProfile | None = None) -> str:
    lines: list[str] = []
    if profile is not None:
        lines.append(profile_line(profile))

    if digest.total == 0:
        lines.append("")
        lines.extend(NO_DATA_LINES)
        return "\n".join(lines)

    lines.append("")
    lines.append(
        f"HEALTH SUMMARY ({digest.total} analyses: {digest.report_count} reports, "
        f"{digest.face_count} face, {digest.risk_count} risk | "
        f"{format_date(digest.oldest)} - {format_date(digest.newest)})"
    )

    if digest.latest_metrics:
        lines.append("")
        lines.append("LATEST METRICS:")
        for m in list(digest.latest_metrics.values())[:MAX_METRIC_LINES]:
            lines.append(_metric_line(m))

    if digest.abnormal_findings:
        lines.append("")
        lines.append("ABNORMAL FINDINGS:")
        for m in digest.abnormal_findings[:MAX_ABNORMAL_LINES]:
            lines.append(f"- {m.name}: {m.value} {m.unit} [{m.status.upper()}]")

    if digest.trends:
        lines.append("")
        lines.append("TRENDS:")
        for t in digest.trends[:MAX_TREND_LINES]:
            lines.append(
                f"- {t.name}: {t.earliest_value} -> {t.latest_value} {t.unit} [{t.direction}]"
            )

    if digest.latest_face_summary:
        lines.append("")
        lines.append(digest.latest_face_summary)

    if digest.latest_risk_summary:
        lines.append("")
        lines.append(digest.latest_risk_summary)

    return "\n".join(lines)
