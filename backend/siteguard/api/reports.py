from __future__ import annotations

import asyncio
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from siteguard.api.deps import as_http_error, get_binder, get_decoder_factory, get_repository
from siteguard.core.exceptions import SiteGuardError
from siteguard.db import get_db
from siteguard.models import AnalysisReportRow, Video, ViolationRow
from siteguard.schemas.analysis import Severity, ThumbnailStatus
from siteguard.schemas.report import (
    Report,
    ReportEditIn,
    ReportFilter,
    ReportListResponse,
    ReportOut,
    ReportStatus,
    ReportSummaryOut,
    ReportUpdate,
    SeverityCount,
    StatsSummary,
    ThumbnailBackfillOut,
    TimelineOut,
    ViolationOut,
)
from siteguard.services.evidence import EvidenceBinder
from siteguard.services.ingest import video_file
from siteguard.services.report_pdf import render_report_pdf
from siteguard.services.report_store import SqlReportRepository, thumbnail_relpath
from siteguard.services.session import AnalysisSession
from siteguard.utils.timecode import timeline_markers

router = APIRouter(prefix="/reports", tags=["reports"])


def _summary_out(report: Report) -> ReportSummaryOut:
    return ReportSummaryOut(
        id=report.id,
        video_id=report.video_id,
        video_file_name=report.video_file_name,
        analysis_date_time=report.analysis_date_time,
        summary=report.summary,
        safety_score=report.safety_score,
        status=report.status,
        violation_count=len(report.violations),
        operator_comments=report.operator_comments,
        video_duration_seconds=report.video_duration_seconds,
    )


def report_to_out(report: Report) -> ReportOut:
    violations = [
        ViolationOut(
            index=index,
            description=v.description,
            start_time_seconds=v.start_time_seconds,
            end_time_seconds=v.end_time_seconds,
            duration_seconds=v.duration_seconds,
            severity=v.severity,
            on_screen_start_time=v.on_screen_start_time,
            on_screen_end_time=v.on_screen_end_time,
            thumbnail_status=v.thumbnail_status.value,
            thumbnail_url=(
                f"/thumbnails/{thumbnail_relpath(report.id, index)}"
                if v.thumbnail_status == ThumbnailStatus.CAPTURED
                else None
            ),
        )
        for index, v in enumerate(report.violations)
    ]
    return ReportOut(
        **_summary_out(report).model_dump(),
        video_file_uri=report.video_file_uri,
        jsa_context=report.jsa_context,
        user_prompt=report.user_prompt,
        raw_response=report.raw_response,
        violations=violations,
        positive_observations=report.positive_observations,
        tags=report.tags,
        processing_time_seconds=report.processing_time_seconds,
    )


def _get_report(repository: SqlReportRepository, report_id: str) -> Report:
    report = repository.get(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@router.get("", response_model=ReportListResponse)
def list_reports(
    status: ReportStatus | None = None,
    severity: Severity | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    search: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repository: SqlReportRepository = Depends(get_repository),
) -> ReportListResponse:
    filters = ReportFilter(
        status=status,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=offset,
    )
    reports = repository.list(filters)
    return ReportListResponse(reports=[_summary_out(r) for r in reports], limit=limit, offset=offset)


@router.get("/stats/summary", response_model=StatsSummary)
def stats_summary(
    db: Session = Depends(get_db),
    repository: SqlReportRepository = Depends(get_repository),
) -> StatsSummary:
    total_reports = db.scalar(select(func.count(AnalysisReportRow.id))) or 0
    total_videos = db.scalar(select(func.count(Video.id))) or 0
    total_violations = db.scalar(select(func.count(ViolationRow.id))) or 0
    average = db.scalar(select(func.avg(AnalysisReportRow.safety_score)))
    rows = db.execute(
        select(ViolationRow.severity, func.count(ViolationRow.id)).group_by(ViolationRow.severity)
    ).all()
    ranked = sorted(rows, key=lambda row: Severity(row[0]).rank)
    recent = repository.list(ReportFilter(limit=5))
    return StatsSummary(
        total_reports=total_reports,
        total_videos=total_videos,
        total_violations=total_violations,
        average_safety_score=round(average or 0),
        severity_breakdown=[SeverityCount(severity=severity, count=count) for severity, count in ranked],
        recent_reports=[_summary_out(r) for r in recent],
    )


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: str, repository: SqlReportRepository = Depends(get_repository)) -> ReportOut:
    return report_to_out(_get_report(repository, report_id))


@router.put("/{report_id}", response_model=ReportOut)
def update_report(
    report_id: str,
    body: ReportEditIn,
    repository: SqlReportRepository = Depends(get_repository),
) -> ReportOut:
    changes = ReportUpdate(**body.model_dump(exclude_unset=True))
    try:
        report = repository.update(report_id, changes)
    except SiteGuardError as exc:
        raise as_http_error(exc) from exc
    return report_to_out(report)


@router.delete("/{report_id}")
def delete_report(report_id: str, repository: SqlReportRepository = Depends(get_repository)) -> dict:
    if not repository.delete(report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    return {"deleted": report_id}


@router.get("/{report_id}/timeline", response_model=TimelineOut)
def report_timeline(report_id: str, repository: SqlReportRepository = Depends(get_repository)) -> TimelineOut:
    report = _get_report(repository, report_id)
    return TimelineOut(
        report_id=report.id,
        video_duration_seconds=report.video_duration_seconds,
        markers=timeline_markers(report.violations, report.video_duration_seconds),
    )


@router.get("/{report_id}/pdf")
def report_pdf(report_id: str, repository: SqlReportRepository = Depends(get_repository)) -> Response:
    report = _get_report(repository, report_id)
    return Response(
        content=render_report_pdf(report),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{report.id}.pdf"'},
    )


@router.post("/{report_id}/thumbnails", response_model=ThumbnailBackfillOut)
async def backfill_thumbnails(
    report_id: str,
    reset: bool = False,
    db: Session = Depends(get_db),
    repository: SqlReportRepository = Depends(get_repository),
    binder: EvidenceBinder = Depends(get_binder),
    decoder_factory=Depends(get_decoder_factory),
) -> ThumbnailBackfillOut:
    """Capture evidence frames for a saved report's pending violations."""
    session = AnalysisSession(repository)
    try:
        report = await asyncio.to_thread(session.select_report, report_id)
    except SiteGuardError as exc:
        raise as_http_error(exc) from exc

    video = await asyncio.to_thread(db.get, Video, report.video_id)
    path = video_file(video) if video else None
    if path is None:
        raise HTTPException(status_code=404, detail="Video file not available for this report")

    if reset:
        session.reset_thumbnails()

    async with decoder_factory(path) as handle:
        outcome = await binder.bind_session(session, handle)

    if outcome.attempted and outcome.applied:
        try:
            await asyncio.to_thread(session.update)
        except SiteGuardError as exc:
            raise as_http_error(exc) from exc

    return ThumbnailBackfillOut(
        report_id=report_id,
        attempted=outcome.attempted,
        captured=outcome.captured,
        failed=outcome.failed,
        hard_failures=outcome.hard_failures,
    )
