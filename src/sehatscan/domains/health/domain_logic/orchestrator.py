"""Request orchestrator — drives one analysis request from upload to history.

Each request moves through::

    Idle -> Validating -> Authenticating -> Inferring (|| Archiving) -> Persisting -> Done

and ends in exactly one terminal state:

* ``validation_failed`` — bad upload or risk inputs (``validation``)
* ``auth_failed``       — no caller identity (``auth``, fixed message)
* ``not_found``         — risk inputs reference missing analyses
* ``fetch_failed``      — risk inputs could not be read (``database``)
* ``inference_failed``  — gateway failure, error kind passed through
* ``degraded``          — inference ok, save failed (success + ``save_warning``)
* ``completed``         — inference ok, saved (success + ``analysis_id``)

A request is attempted at most once; nothing here retries. Any exception
escaping a stage ends in ``crashed``: an ``unexpected`` failure with a
fixed message.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any

from sehatscan.core.audit.logger import AuditLogger
from sehatscan.core.identity.resolver import Identity, IdentityResolver, resolve_or_none
from sehatscan.core.inference.gateway import InferenceGateway
from sehatscan.core.inference.models import Artifact
from sehatscan.core.results.outcome import (
    AUTH_REQUIRED_MESSAGE,
    RISK_SAVE_WARNING_MESSAGE,
    SAVE_WARNING_MESSAGE,
    UNEXPECTED_MESSAGE,
    RequestOutcome,
)
from sehatscan.core.storage.database import DatabaseError
from sehatscan.core.storage.models import FaceAnalysis, ReportAnalysis
from sehatscan.core.storage.repository import AnalysisRepository, RepositoryError
from sehatscan.domains.health.domain_logic.archiving import SideUploadCoordinator
from sehatscan.domains.health.domain_logic.artifact_validator import (
    FACE_CONSTRAINTS,
    REPORT_CONSTRAINTS,
    ArtifactConstraints,
    validate_artifact,
)
from sehatscan.domains.health.domain_logic.persistence import PersistenceCoordinator

logger = logging.getLogger(__name__)

RISK_UNEXPECTED_MESSAGE = "An unexpected error occurred during health check. Please try again."
RISK_FETCH_FAILED_MESSAGE = "Failed to retrieve analysis data. Please try again."


class Stage(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    AUTHENTICATING = "authenticating"
    INFERRING = "inferring"
    PERSISTING = "persisting"
    DONE = "done"


class Terminal(str, enum.Enum):
    VALIDATION_FAILED = "validation_failed"
    AUTH_FAILED = "auth_failed"
    NOT_FOUND = "not_found"
    FETCH_FAILED = "fetch_failed"
    INFERENCE_FAILED = "inference_failed"
    DEGRADED = "degraded"
    COMPLETED = "completed"
    CRASHED = "crashed"


@dataclass
class RequestTrace:
    """Stage history of one request, used for logs and the audit trail."""

    operation: str
    started: float = field(default_factory=time.monotonic)
    stage: Stage = Stage.IDLE
    terminal: Terminal | None = None
    owner_id: str | None = None
    stages: list[str] = field(default_factory=list)

    def enter(self, stage: Stage) -> None:
        self.stage = stage
        self.stages.append(stage.value)
        logger.debug("%s -> %s", self.operation, stage.value)

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class RequestOrchestrator:
    """Composes validation, identity, inference, archiving and persistence.

    Usage::

        orchestrator = RequestOrchestrator(
            gateway=gateway,
            identity=StaticIdentityResolver("user-1"),
            repository=repository,
            persistence=PersistenceCoordinator(repository, cache),
            side_upload=SideUploadCoordinator(archiver),
        )
        outcome = await orchestrator.analyze_face(artifact)
    """

    def __init__(
        self,
        *,
        gateway: InferenceGateway,
        identity: IdentityResolver,
        repository: AnalysisRepository,
        persistence: PersistenceCoordinator,
        side_upload: SideUploadCoordinator | None = None,
        audit: AuditLogger | None = None,
        face_constraints: ArtifactConstraints = FACE_CONSTRAINTS,
        report_constraints: ArtifactConstraints = REPORT_CONSTRAINTS,
    ) -> None:
        self._gateway = gateway
        self._identity = identity
        self._repo = repository
        self._persistence = persistence
        self._side_upload = side_upload or SideUploadCoordinator(None)
        self._audit = audit
        self._face_constraints = face_constraints
        self._report_constraints = report_constraints

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def analyze_face(self, artifact: Artifact | None) -> RequestOutcome:
        """Analyze a face photo; archives a copy of the image alongside inference."""
        trace = RequestTrace("analyze_face")
        try:
            outcome = await self._run_upload(
                trace, "face", artifact, self._face_constraints, archive=True
            )
        except Exception:
            logger.exception("analyze_face crashed")
            outcome = self._crash(trace, UNEXPECTED_MESSAGE)
        self._record(trace, outcome, _artifact_summary(artifact))
        return outcome

    async def analyze_report(self, artifact: Artifact | None) -> RequestOutcome:
        """Analyze a medical report image or PDF."""
        trace = RequestTrace("analyze_report")
        try:
            outcome = await self._run_upload(
                trace, "report", artifact, self._report_constraints, archive=False
            )
        except Exception:
            logger.exception("analyze_report crashed")
            outcome = self._crash(trace, UNEXPECTED_MESSAGE)
        self._record(trace, outcome, _artifact_summary(artifact))
        return outcome

    async def generate_risk_assessment(
        self,
        report_analysis_id: str | None,
        face_analysis_id: str | None,
        user_data: Any,
    ) -> RequestOutcome:
        """Combine prior report and/or face analyses with user context into a risk assessment."""
        trace = RequestTrace("generate_risk_assessment")
        try:
            outcome = await self._run_risk(trace, report_analysis_id, face_analysis_id, user_data)
        except Exception:
            logger.exception("generate_risk_assessment crashed")
            outcome = self._crash(trace, RISK_UNEXPECTED_MESSAGE)
        self._record(
            trace,
            outcome,
            {
                "report_analysis_id": report_analysis_id,
                "face_analysis_id": face_analysis_id,
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def _run_upload(
        self,
        trace: RequestTrace,
        kind: str,
        artifact: Artifact | None,
        constraints: ArtifactConstraints,
        *,
        archive: bool,
    ) -> RequestOutcome:
        trace.enter(Stage.VALIDATING)
        validation = validate_artifact(artifact, constraints)
        if not validation.valid:
            logger.info("%s validation failed: %s", trace.operation, validation.error)
            return self._end(
                trace, Terminal.VALIDATION_FAILED, RequestOutcome.fail(validation.error, "validation")
            )
        assert artifact is not None

        identity = self._authenticate(trace)
        if identity is None:
            return self._end(trace, Terminal.AUTH_FAILED, RequestOutcome.fail(AUTH_REQUIRED_MESSAGE, "auth"))

        trace.enter(Stage.INFERRING)
        archive_task = self._side_upload.start(artifact) if archive else None
        try:
            inference = await self._gateway.invoke(kind, artifact)
        except asyncio.CancelledError:
            self._side_upload.cancel(archive_task)
            raise
        except Exception:
            self._side_upload.cancel(archive_task)
            logger.exception("%s inference crashed", trace.operation)
            return self._crash(trace, UNEXPECTED_MESSAGE)

        if not inference.success:
            self._side_upload.cancel(archive_task)
            return self._end(trace, Terminal.INFERENCE_FAILED, inference)

        data = dict(inference.data)
        archived = await self._side_upload.collect(archive_task)
        if archived is not None:
            data.update(archived.source_fields())

        return self._persist(trace, kind, data, warning=SAVE_WARNING_MESSAGE)

    async def _run_risk(
        self,
        trace: RequestTrace,
        report_analysis_id: str | None,
        face_analysis_id: str | None,
        user_data: Any,
    ) -> RequestOutcome:
        trace.enter(Stage.VALIDATING)
        has_report = isinstance(report_analysis_id, str) and bool(report_analysis_id)
        has_face = isinstance(face_analysis_id, str) and bool(face_analysis_id)
        if not has_report and not has_face:
            return self._end(
                trace,
                Terminal.VALIDATION_FAILED,
                RequestOutcome.fail("At least one analysis (report or face) is required", "validation"),
            )
        if not isinstance(user_data, dict):
            return self._end(
                trace,
                Terminal.VALIDATION_FAILED,
                RequestOutcome.fail("User form data is required", "validation"),
            )

        identity = self._authenticate(trace)
        if identity is None:
            return self._end(trace, Terminal.AUTH_FAILED, RequestOutcome.fail(AUTH_REQUIRED_MESSAGE, "auth"))

        try:
            report = self._repo.get_analysis(report_analysis_id, identity.owner_id) if has_report else None
            face = self._repo.get_analysis(face_analysis_id, identity.owner_id) if has_face else None
        except (RepositoryError, DatabaseError, sqlite3.Error):
            logger.exception("Risk assessment source fetch failed")
            return self._end(
                trace, Terminal.FETCH_FAILED, RequestOutcome.fail(RISK_FETCH_FAILED_MESSAGE, "database")
            )

        if has_report and not isinstance(report, ReportAnalysis):
            return self._end(
                trace,
                Terminal.NOT_FOUND,
                RequestOutcome.fail(
                    "Selected report analysis not found. Please select a different report.",
                    "not_found",
                ),
            )
        if has_face and not isinstance(face, FaceAnalysis):
            return self._end(
                trace,
                Terminal.NOT_FOUND,
                RequestOutcome.fail(
                    "Selected face analysis not found. Please select a different face analysis.",
                    "not_found",
                ),
            )

        lab_data = (report.structured_data or report.raw_payload or None) if report else None
        visual_metrics = (face.visual_metrics or None) if face else None
        if not lab_data and not visual_metrics:
            return self._end(
                trace,
                Terminal.VALIDATION_FAILED,
                RequestOutcome.fail(
                    "No usable data found in selected analyses. Please select different analyses.",
                    "validation",
                ),
            )

        trace.enter(Stage.INFERRING)
        payload = {"lab_data": lab_data, "visual_metrics": visual_metrics, "user_data": user_data}
        try:
            inference = await self._gateway.invoke("risk", payload)
        except Exception:
            logger.exception("Risk inference crashed")
            return self._crash(trace, RISK_UNEXPECTED_MESSAGE)

        if not inference.success:
            return self._end(trace, Terminal.INFERENCE_FAILED, inference)

        return self._persist(
            trace,
            "risk",
            dict(inference.data),
            warning=RISK_SAVE_WARNING_MESSAGE,
            report_analysis_id=report_analysis_id if has_report else None,
            face_analysis_id=face_analysis_id if has_face else None,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _authenticate(self, trace: RequestTrace) -> Identity | None:
        trace.enter(Stage.AUTHENTICATING)
        identity = resolve_or_none(self._identity)
        if identity is not None:
            trace.owner_id = identity.owner_id
        return identity

    def _persist(
        self,
        trace: RequestTrace,
        kind: str,
        data: dict[str, Any],
        *,
        warning: str,
        report_analysis_id: str | None = None,
        face_analysis_id: str | None = None,
    ) -> RequestOutcome:
        trace.enter(Stage.PERSISTING)
        saved = self._persistence.persist(
            trace.owner_id or "",
            kind,
            data,
            report_analysis_id=report_analysis_id,
            face_analysis_id=face_analysis_id,
        )
        if not saved.success:
            return self._end(trace, Terminal.DEGRADED, RequestOutcome.ok(data, save_warning=warning))
        return self._end(trace, Terminal.COMPLETED, RequestOutcome.ok(data, analysis_id=saved.analysis_id))

    def _end(self, trace: RequestTrace, terminal: Terminal, outcome: RequestOutcome) -> RequestOutcome:
        trace.enter(Stage.DONE)
        trace.terminal = terminal
        return outcome

    def _crash(self, trace: RequestTrace, message: str) -> RequestOutcome:
        return self._end(trace, Terminal.CRASHED, RequestOutcome.fail(message, "unexpected"))

    def _record(self, trace: RequestTrace, outcome: RequestOutcome, summary: dict[str, Any]) -> None:
        duration_ms = trace.duration_ms
        terminal = trace.terminal.value if trace.terminal else "unknown"
        logger.info(
            "%s finished as %s in %.0fms (analysis_id=%s)",
            trace.operation,
            terminal,
            duration_ms,
            outcome.analysis_id,
        )
        if self._audit is None:
            return
        if not outcome.success:
            status = "failure"
        elif outcome.save_warning is not None:
            status = "degraded"
        else:
            status = "success"
        self._audit.log_request(
            trace.operation,
            summary,
            owner_id=trace.owner_id,
            status=status,
            error_kind=outcome.error_kind,
            analysis_id=outcome.analysis_id,
            duration_ms=round(duration_ms, 1),
            metadata={"terminal": terminal, "stages": trace.stages},
        )


def _artifact_summary(artifact: Artifact | None) -> dict[str, Any]:
    if artifact is None:
        return {"artifact": None}
    return {"filename": artifact.filename, "media_type": artifact.media_type, "size": artifact.size}
