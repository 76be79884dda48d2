from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from siteguard.core.exceptions import InconsistentStateError, ReportNotFoundError, SaveRejectedError
from siteguard.schemas.analysis import AnalysisResult, Violation
from siteguard.schemas.report import Report, ReportStatus, ReportUpdate
from siteguard.services.report_store import ReportRepository

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    DRAFT = "draft"
    SAVED = "saved"
    UPDATED = "updated"


@dataclass(frozen=True)
class UploadContext:
    video_id: str
    file_name: str
    file_uri: str | None = None
    mime_type: str = "video/mp4"


@dataclass(frozen=True)
class LiveAnalysis:
    """A fresh analysis result that may not have been saved yet."""

    result: AnalysisResult
    token: int

    @property
    def violations(self) -> list[Violation]:
        return self.result.violations


@dataclass(frozen=True)
class HistoricalReport:
    """A previously saved report opened for viewing."""

    report: Report

    @property
    def violations(self) -> list[Violation]:
        return self.report.violations


DisplayTarget = Union[LiveAnalysis, HistoricalReport]


def can_save(result: AnalysisResult | None) -> bool:
    """A result is savable unless it carries an error and no violations at all."""
    if result is None:
        return False
    if result.has_error and not result.violations:
        return False
    return True


class AnalysisSession:
    """One operator's workspace: a live analysis or a historical report, never both.

    The session borrows the active report from the repository; every write goes
    through the repository by the active report's id.
    """

    def __init__(self, repository: ReportRepository) -> None:
        self.repository = repository
        self.display: DisplayTarget | None = None
        self.active_report: Report | None = None
        self.history: list[Report] = []
        self.state: LifecycleState | None = None
        self.upload: UploadContext | None = None
        self.jsa_context = ""
        self.user_prompt = ""
        self.operator_comments = ""
        self.report_status = ReportStatus.PENDING_REVIEW
        self._generation = 0
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def live_result(self) -> AnalysisResult | None:
        if isinstance(self.display, LiveAnalysis):
            return self.display.result
        return None

    @property
    def viewed_report(self) -> Report | None:
        if isinstance(self.display, HistoricalReport):
            return self.display.report
        return None

    def refresh_history(self) -> list[Report]:
        self.history = self.repository.list()
        return self.history

    def _reset(self) -> None:
        self._generation += 1
        self._in_flight = False
        self.display = None
        self.active_report = None
        self.state = None
        self.upload = None
        self.operator_comments = ""
        self.report_status = ReportStatus.PENDING_REVIEW

    def is_current(self, token: int) -> bool:
        return token == self._generation and self._in_flight

    def begin_analysis(self, jsa_context: str = "", user_prompt: str = "") -> int:
        """Start a new analysis; clears any history selection. Returns the response token."""
        self._reset()
        self.jsa_context = jsa_context or ""
        self.user_prompt = user_prompt or ""
        self._in_flight = True
        return self._generation

    def attach_upload(self, token: int, upload: UploadContext) -> bool:
        if not self.is_current(token):
            logger.info("Ignoring upload details for a superseded analysis")
            return False
        self.upload = upload
        return True

    def complete_analysis(self, token: int, result: AnalysisResult) -> bool:
        """Accept ``result`` only if it answers the analysis still in progress."""
        if not self.is_current(token):
            logger.info("Discarding stale analysis response")
            return False
        self._in_flight = False
        self.display = LiveAnalysis(result=result, token=token)
        self.state = LifecycleState.DRAFT
        return True

    def select_report(self, report_id: str) -> Report:
        """Open a saved report for viewing; abandons any in-flight analysis."""
        report = self.repository.get(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        self._reset()
        self.display = HistoricalReport(report=report)
        self.active_report = report
        self.state = LifecycleState.SAVED
        self.operator_comments = report.operator_comments or ""
        self.report_status = report.status
        return report

    def set_operator_comments(self, comments: str | None) -> None:
        self.operator_comments = comments or ""

    def set_report_status(self, status: ReportStatus) -> None:
        self.report_status = ReportStatus(status)

    def can_save(self) -> bool:
        if isinstance(self.display, HistoricalReport):
            return True
        return can_save(self.live_result)

    def save(self, video_duration_seconds: float | None = None, processing_time_seconds: float | None = None) -> Report:
        """Persist the live result, or update the viewed report when one is open."""
        if isinstance(self.display, HistoricalReport):
            active = self.active_report
            if active is None or active.id != self.display.report.id:
                raise InconsistentStateError(
                    "Trying to update a historical report that is not set as active."
                )
            return self.update()

        result = self.live_result
        if result is None or self.upload is None:
            raise SaveRejectedError("No analysis result or upload details to save.")
        if not can_save(result):
            raise SaveRejectedError("Cannot save report with critical analysis errors and no violation data.")
        if self.active_report is not None:
            return self.update()

        report = Report(
            video_id=self.upload.video_id,
            video_file_name=self.upload.file_name,
            video_file_uri=self.upload.file_uri,
            analysis_date_time=datetime.utcnow(),
            jsa_context=self.jsa_context or None,
            user_prompt=self.user_prompt or None,
            raw_response=result.raw_response or result.model_dump_json(by_alias=True),
            summary=result.summary,
            safety_score=result.safety_score,
            violations=list(result.violations),
            positive_observations=list(result.positive_observations),
            operator_comments=self.operator_comments or None,
            status=self.report_status,
            video_duration_seconds=video_duration_seconds,
            processing_time_seconds=processing_time_seconds,
        )
        saved = self.repository.create(report)
        self.active_report = saved
        self.state = LifecycleState.SAVED
        logger.info("Saved report %s for video %s", saved.id, saved.video_id)
        self.refresh_history()
        return saved

    def update(self, tags: str | None = None) -> Report:
        """Write comments, status and violations to the active report."""
        active = self.active_report
        if active is None or active.id is None:
            raise InconsistentStateError("No report is active for update.")

        viewed = self.viewed_report
        if viewed is not None and viewed.id != active.id:
            raise InconsistentStateError(
                f"Active report {active.id} does not match the viewed report {viewed.id}."
            )

        if viewed is not None:
            violations = viewed.violations
        elif self.live_result is not None:
            violations = self.live_result.violations
        else:
            violations = active.violations

        fields = {
            "operator_comments": self.operator_comments or None,
            "status": self.report_status,
            "violations": list(violations),
        }
        if tags is not None:
            fields["tags"] = tags
        changes = ReportUpdate(**fields)

        updated = self.repository.update(active.id, changes)
        self.active_report = updated
        if viewed is not None:
            self.display = HistoricalReport(report=updated)
        self.state = LifecycleState.UPDATED
        self._replace_in_history(updated)
        return updated

    def _replace_in_history(self, report: Report) -> None:
        self.history = [report if r.id == report.id else r for r in self.history]

    def apply_evidence(self, target: DisplayTarget, violations: list[Violation]) -> bool:
        """Write thumbnail results back to ``target`` if it is still what is displayed."""
        if self.display is not target:
            logger.info("Display changed during thumbnail capture; discarding results")
            return False

        if isinstance(target, LiveAnalysis):
            result = target.result.model_copy(update={"violations": list(violations)})
            self.display = LiveAnalysis(result=result, token=target.token)
            return True

        report = target.report.model_copy(update={"violations": list(violations)})
        self.display = HistoricalReport(report=report)
        self._replace_in_history(report)
        if self.active_report is not None and self.active_report.id == report.id:
            self.active_report = report
        return True

    def reset_thumbnails(self) -> None:
        """Mark every thumbnail pending again so the next bind re-captures them."""
        target = self.display
        if target is None:
            return
        self.apply_evidence(target, [v.reset_thumbnail() for v in target.violations])
