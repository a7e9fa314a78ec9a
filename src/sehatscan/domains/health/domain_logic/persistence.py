"""Persistence coordinator — stores inference results and invalidates caches.

``persist`` never raises: a store failure comes back as an unsuccessful
``PersistOutcome`` so the orchestrator can degrade instead of failing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sehatscan.core.storage.cache import Cache, invalidate_owner
from sehatscan.core.storage.models import Analysis, LabMetric, build_analysis
from sehatscan.core.storage.repository import AnalysisRepository, RepositoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistOutcome:
    success: bool
    analysis_id: str | None = None
    error: str | None = None


def analysis_from_result(
    owner_id: str,
    kind: str,
    result: dict[str, Any],
    *,
    report_analysis_id: str | None = None,
    face_analysis_id: str | None = None,
) -> Analysis:
    """Build the tagged variant for an inference result."""
    if kind == "face":
        details = {
            "visual_metrics": result.get("visual_metrics"),
            "problems_detected": result.get("problems_detected") or [],
            "treatments": result.get("treatments") or [],
        }
    elif kind == "report":
        structured = result.get("structured_data")
        if not isinstance(structured, dict):
            structured = {}
        metrics = [
            m.to_dict()
            for m in (LabMetric.from_raw(raw) for raw in structured.get("metrics") or [])
            if m is not None
        ]
        details = {"structured_data": structured, "structured_metrics": metrics}
    elif kind == "risk":
        details = {
            "narrative": result.get("risk_assessment") or "",
            "report_analysis_id": report_analysis_id,
            "face_analysis_id": face_analysis_id,
        }
    else:
        raise ValueError(f"Unknown analysis kind: {kind!r}")

    return build_analysis(kind=kind, owner_id=owner_id, raw_payload=result, details=details)


class PersistenceCoordinator:
    """Writes analyses and keeps the owner's cached reads fresh.

    Usage::

        coordinator = PersistenceCoordinator(repository, cache)
        outcome = coordinator.persist(owner_id, "report", inference_data)
        if outcome.success:
            print(outcome.analysis_id)
    """

    def __init__(self, repository: AnalysisRepository, cache: Cache | None = None) -> None:
        self._repo = repository
        self._cache = cache

    def persist(
        self,
        owner_id: str,
        kind: str,
        result: dict[str, Any],
        *,
        report_analysis_id: str | None = None,
        face_analysis_id: str | None = None,
    ) -> PersistOutcome:
        try:
            analysis = analysis_from_result(
                owner_id,
                kind,
                result,
                report_analysis_id=report_analysis_id,
                face_analysis_id=face_analysis_id,
            )
            analysis_id = self._repo.create_analysis(analysis)
        except RepositoryError as exc:
            logger.error("Failed to save %s analysis: %s", kind, exc)
            return PersistOutcome(success=False, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure saving %s analysis", kind)
            return PersistOutcome(success=False, error=str(exc))

        # Runs only after the write committed.
        invalidate_owner(self._cache, owner_id)
        return PersistOutcome(success=True, analysis_id=analysis_id)
