from __future__ import annotations

import logging
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from siteguard.core.exceptions import ReportNotFoundError
from siteguard.models import AnalysisReportRow, PositiveObservationRow, ReportMetadataRow, ViolationRow
from siteguard.schemas.analysis import Thumbnail, ThumbnailStatus, Violation
from siteguard.schemas.report import Report, ReportFilter, ReportStatus, ReportUpdate

logger = logging.getLogger(__name__)


def new_report_id() -> str:
    return f"report_{uuid.uuid4().hex[:16]}"


def thumbnail_relpath(report_id: str, index: int) -> str:
    return f"{report_id}/{index}.jpg"


class ReportRepository(Protocol):
    def create(self, report: Report) -> Report: ...

    def get(self, report_id: str) -> Report | None: ...

    def list(self, filters: ReportFilter | None = None) -> list[Report]: ...

    def update(self, report_id: str, changes: ReportUpdate) -> Report: ...

    def delete(self, report_id: str) -> bool: ...


def _apply_changes(report: Report, changes: ReportUpdate) -> Report:
    update = {}
    for name in changes.model_fields_set:
        value = getattr(changes, name)
        if name in ("status", "violations") and value is None:
            continue
        update[name] = list(value) if name == "violations" else value
    return report.model_copy(update=update, deep=True)


def _matches(report: Report, filters: ReportFilter) -> bool:
    if filters.status is not None and report.status != filters.status:
        return False
    if filters.severity is not None and not any(v.severity == filters.severity for v in report.violations):
        return False
    if filters.start_date is not None and report.analysis_date_time < filters.start_date:
        return False
    if filters.end_date is not None and report.analysis_date_time > filters.end_date:
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = [report.summary, report.video_file_name, report.operator_comments]
        if not any(needle in (text or "").lower() for text in haystack):
            return False
    return True


class InMemoryReportRepository:
    """Thread-safe dict-backed repository; hands out copies so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reports: dict[str, Report] = {}

    def create(self, report: Report) -> Report:
        stored = report.model_copy(update={"id": report.id or new_report_id()}, deep=True)
        with self._lock:
            self._reports[stored.id] = stored
        return stored.model_copy(deep=True)

    def get(self, report_id: str) -> Report | None:
        with self._lock:
            report = self._reports.get(report_id)
        return report.model_copy(deep=True) if report else None

    def list(self, filters: ReportFilter | None = None) -> list[Report]:
        filters = filters or ReportFilter()
        with self._lock:
            reports = [r for r in self._reports.values() if _matches(r, filters)]
        reports.sort(key=lambda r: r.analysis_date_time, reverse=True)
        return [r.model_copy(deep=True) for r in reports[filters.offset : filters.offset + filters.limit]]

    def update(self, report_id: str, changes: ReportUpdate) -> Report:
        with self._lock:
            report = self._reports.get(report_id)
            if report is None:
                raise ReportNotFoundError(report_id)
            report = _apply_changes(report, changes)
            self._reports[report_id] = report
        return report.model_copy(deep=True)

    def delete(self, report_id: str) -> bool:
        with self._lock:
            return self._reports.pop(report_id, None) is not None


class SqlReportRepository:
    """Report persistence over the analysis_reports table family.

    Captured thumbnails are written as JPEG files under ``thumbnail_dir`` and
    read back on load, so a stored report round-trips with identical bytes.
    """

    def __init__(self, db: Session, thumbnail_dir: str | Path) -> None:
        self.db = db
        self.thumbnail_dir = Path(thumbnail_dir)

    def _query(self):
        return select(AnalysisReportRow).options(
            selectinload(AnalysisReportRow.violations),
            selectinload(AnalysisReportRow.observations),
            selectinload(AnalysisReportRow.meta),
        )

    def _load_row(self, report_id: str) -> AnalysisReportRow | None:
        return self.db.scalars(self._query().where(AnalysisReportRow.id == report_id)).first()

    def _read_thumbnail(self, row: ViolationRow) -> Thumbnail:
        if row.thumbnail_status == ThumbnailStatus.CAPTURED.value:
            path = self.thumbnail_dir / (row.thumbnail_path or "")
            if row.thumbnail_path and path.is_file():
                return Thumbnail(status=ThumbnailStatus.CAPTURED, data=path.read_bytes())
            logger.warning("Thumbnail file missing for report %s violation %d", row.report_id, row.position)
            return Thumbnail()
        return Thumbnail(status=ThumbnailStatus(row.thumbnail_status))

    def _to_report(self, row: AnalysisReportRow) -> Report:
        meta = row.meta
        violations = [
            Violation(
                description=v.description,
                start_time_seconds=v.start_time_seconds,
                end_time_seconds=v.end_time_seconds,
                duration_seconds=v.duration_seconds,
                severity=v.severity,
                on_screen_start_time=v.on_screen_start_time,
                on_screen_end_time=v.on_screen_end_time,
                thumbnail=self._read_thumbnail(v),
            )
            for v in row.violations
        ]
        return Report(
            id=row.id,
            video_id=row.video_id,
            video_file_name=row.video_file_name,
            video_file_uri=row.video_file_uri,
            analysis_date_time=row.analysis_date,
            jsa_context=meta.jsa_context if meta else None,
            user_prompt=meta.user_instructions if meta else None,
            raw_response=row.raw_response or "",
            summary=row.summary,
            safety_score=row.safety_score,
            violations=violations,
            positive_observations=[o.observation for o in row.observations],
            operator_comments=meta.operator_comments if meta else None,
            status=ReportStatus(meta.report_status) if meta else ReportStatus.PENDING_REVIEW,
            video_duration_seconds=row.video_duration_seconds,
            tags=meta.tags if meta else None,
            processing_time_seconds=row.processing_time,
        )

    def _write_violations(self, row: AnalysisReportRow, violations: list[Violation]) -> None:
        report_dir = self.thumbnail_dir / row.id
        if report_dir.exists():
            shutil.rmtree(report_dir)

        rows = []
        for index, violation in enumerate(violations):
            thumbnail_path = None
            if violation.thumbnail.status == ThumbnailStatus.CAPTURED:
                thumbnail_path = thumbnail_relpath(row.id, index)
                target = self.thumbnail_dir / thumbnail_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(violation.thumbnail.data)
            rows.append(
                ViolationRow(
                    position=index,
                    description=violation.description,
                    severity=violation.severity.value,
                    start_time_seconds=violation.start_time_seconds,
                    end_time_seconds=violation.end_time_seconds,
                    duration_seconds=violation.duration_seconds,
                    on_screen_start_time=violation.on_screen_start_time,
                    on_screen_end_time=violation.on_screen_end_time,
                    thumbnail_status=violation.thumbnail.status.value,
                    thumbnail_path=thumbnail_path,
                )
            )
        row.violations = rows

    def create(self, report: Report) -> Report:
        report_id = report.id or new_report_id()
        row = AnalysisReportRow(
            id=report_id,
            video_id=report.video_id,
            video_file_name=report.video_file_name,
            video_file_uri=report.video_file_uri,
            raw_response=report.raw_response or "",
            summary=report.summary,
            safety_score=report.safety_score,
            analysis_date=report.analysis_date_time,
            processing_time=report.processing_time_seconds,
            video_duration_seconds=report.video_duration_seconds,
        )
        row.observations = [
            PositiveObservationRow(position=i, observation=text) for i, text in enumerate(report.positive_observations)
        ]
        row.meta = ReportMetadataRow(
            operator_comments=report.operator_comments,
            report_status=report.status.value,
            jsa_context=report.jsa_context,
            user_instructions=report.user_prompt,
            tags=report.tags,
        )
        self._write_violations(row, report.violations)
        self.db.add(row)
        self.db.commit()
        logger.info("Stored report %s with %d violation(s)", report_id, len(report.violations))
        return self.get(report_id)

    def get(self, report_id: str) -> Report | None:
        row = self._load_row(report_id)
        return self._to_report(row) if row else None

    def list(self, filters: ReportFilter | None = None) -> list[Report]:
        filters = filters or ReportFilter()
        stmt = self._query().outerjoin(ReportMetadataRow)
        if filters.status is not None:
            stmt = stmt.where(ReportMetadataRow.report_status == filters.status.value)
        if filters.severity is not None:
            stmt = stmt.where(
                AnalysisReportRow.violations.any(ViolationRow.severity == filters.severity.value)
            )
        if filters.start_date is not None:
            stmt = stmt.where(AnalysisReportRow.analysis_date >= filters.start_date)
        if filters.end_date is not None:
            stmt = stmt.where(AnalysisReportRow.analysis_date <= filters.end_date)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    AnalysisReportRow.summary.ilike(pattern),
                    AnalysisReportRow.video_file_name.ilike(pattern),
                    ReportMetadataRow.operator_comments.ilike(pattern),
                )
            )
        stmt = stmt.order_by(AnalysisReportRow.analysis_date.desc()).limit(filters.limit).offset(filters.offset)
        return [self._to_report(row) for row in self.db.scalars(stmt).unique()]

    def update(self, report_id: str, changes: ReportUpdate) -> Report:
        row = self._load_row(report_id)
        if row is None:
            raise ReportNotFoundError(report_id)

        if row.meta is None:
            row.meta = ReportMetadataRow()
        fields = changes.model_fields_set
        if "operator_comments" in fields:
            row.meta.operator_comments = changes.operator_comments
        if "status" in fields and changes.status is not None:
            row.meta.report_status = changes.status.value
        if "tags" in fields:
            row.meta.tags = changes.tags
        if "violations" in fields and changes.violations is not None:
            self._write_violations(row, changes.violations)
        row.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.expire_all()
        return self.get(report_id)

    def delete(self, report_id: str) -> bool:
        row = self.db.get(AnalysisReportRow, report_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        shutil.rmtree(self.thumbnail_dir / report_id, ignore_errors=True)
        logger.info("Deleted report %s", report_id)
        return True
