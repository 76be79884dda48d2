from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from siteguard.schemas.analysis import AnalysisResult, CamelModel, Severity, Violation


class ReportStatus(str, Enum):
    PENDING_REVIEW = "Pending Review"
    REVIEWED = "Reviewed"
    ACTION_REQUIRED = "Action Required"
    CLOSED = "Closed"


class Report(CamelModel):
    id: str | None = None
    video_id: str
    video_file_name: str
    video_file_uri: str | None = None
    analysis_date_time: datetime = Field(default_factory=datetime.utcnow)
    jsa_context: str | None = None
    user_prompt: str | None = None
    raw_response: str = ""
    summary: str | None = None
    safety_score: int | None = Field(default=None, ge=0, le=100)
    violations: list[Violation] = Field(default_factory=list)
    positive_observations: list[str] = Field(default_factory=list)
    operator_comments: str | None = None
    status: ReportStatus = ReportStatus.PENDING_REVIEW
    video_duration_seconds: float | None = None
    tags: str | None = None
    processing_time_seconds: float | None = None

    def as_analysis_result(self) -> AnalysisResult:
        return AnalysisResult(
            summary=self.summary,
            safety_score=self.safety_score,
            violations=list(self.violations),
            positive_observations=list(self.positive_observations),
            raw_response=self.raw_response,
        )


class ReportUpdate(CamelModel):
    """Partial update; only fields explicitly set are written."""

    operator_comments: str | None = None
    status: ReportStatus | None = None
    tags: str | None = None
    violations: list[Violation] | None = None


class ReportEditIn(CamelModel):
    operator_comments: str | None = None
    status: ReportStatus | None = None
    tags: str | None = None


class ReportFilter(BaseModel):
    status: ReportStatus | None = None
    severity: Severity | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class ViolationOut(CamelModel):
    index: int
    description: str
    start_time_seconds: float
    end_time_seconds: float
    duration_seconds: float
    severity: Severity
    on_screen_start_time: str | None = None
    on_screen_end_time: str | None = None
    thumbnail_status: str
    thumbnail_url: str | None = None


class ReportSummaryOut(CamelModel):
    id: str
    video_id: str
    video_file_name: str
    analysis_date_time: datetime
    summary: str | None = None
    safety_score: int | None = None
    status: ReportStatus
    violation_count: int
    operator_comments: str | None = None
    video_duration_seconds: float | None = None


class ReportOut(ReportSummaryOut):
    video_file_uri: str | None = None
    jsa_context: str | None = None
    user_prompt: str | None = None
    raw_response: str = ""
    violations: list[ViolationOut] = Field(default_factory=list)
    positive_observations: list[str] = Field(default_factory=list)
    tags: str | None = None
    processing_time_seconds: float | None = None


class ReportListResponse(CamelModel):
    reports: list[ReportSummaryOut]
    limit: int
    offset: int


class TimelineMarker(CamelModel):
    index: int
    severity: Severity
    description: str
    start_time_seconds: float
    left_percent: float
    width_percent: float


class TimelineOut(CamelModel):
    report_id: str
    video_duration_seconds: float | None = None
    markers: list[TimelineMarker] = Field(default_factory=list)


class SeverityCount(BaseModel):
    severity: str
    count: int


class StatsSummary(CamelModel):
    total_reports: int
    total_videos: int
    total_violations: int
    average_safety_score: int
    severity_breakdown: list[SeverityCount] = Field(default_factory=list)
    recent_reports: list[ReportSummaryOut] = Field(default_factory=list)


class ThumbnailBackfillOut(CamelModel):
    report_id: str
    attempted: int
    captured: int
    failed: int
    hard_failures: int
