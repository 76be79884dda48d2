from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from siteguard.db import Base


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    upload_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    processing_status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False, index=True)
    processed_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    reports: Mapped[list[AnalysisReportRow]] = relationship(back_populates="video", cascade="all, delete-orphan")


class AnalysisReportRow(Base):
    __tablename__ = "analysis_reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    video_id: Mapped[str] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    video_file_name: Mapped[str] = mapped_column(Text, nullable=False)
    video_file_uri: Mapped[str | None] = mapped_column(Text, nullable=True)

    raw_response: Mapped[str] = mapped_column(Text, default="", nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    safety_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    analysis_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    processing_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    video_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    video: Mapped[Video] = relationship(back_populates="reports")
    violations: Mapped[list[ViolationRow]] = relationship(
        back_populates="report", cascade="all, delete-orphan", order_by="ViolationRow.position"
    )
    observations: Mapped[list[PositiveObservationRow]] = relationship(
        back_populates="report", cascade="all, delete-orphan", order_by="PositiveObservationRow.position"
    )
    meta: Mapped[ReportMetadataRow | None] = relationship(
        back_populates="report", cascade="all, delete-orphan", uselist=False
    )


class ViolationRow(Base):
    __tablename__ = "violations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(
        ForeignKey("analysis_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    start_time_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    end_time_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    on_screen_start_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    on_screen_end_time: Mapped[str | None] = mapped_column(String(64), nullable=True)

    thumbnail_status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    report: Mapped[AnalysisReportRow] = relationship(back_populates="violations")


class PositiveObservationRow(Base):
    __tablename__ = "positive_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(
        ForeignKey("analysis_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    observation: Mapped[str] = mapped_column(Text, nullable=False)

    report: Mapped[AnalysisReportRow] = relationship(back_populates="observations")


class ReportMetadataRow(Base):
    __tablename__ = "report_metadata"

    report_id: Mapped[str] = mapped_column(ForeignKey("analysis_reports.id", ondelete="CASCADE"), primary_key=True)
    operator_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    report_status: Mapped[str] = mapped_column(String(32), default="Pending Review", nullable=False, index=True)
    jsa_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    report: Mapped[AnalysisReportRow] = relationship(back_populates="meta")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="Active", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    cameras: Mapped[list[Camera]] = relationship(back_populates="project")


class Camera(Base):
    __tablename__ = "cameras"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rtsp_url: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(32), default="Offline", nullable=False)
    location_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    project: Mapped[Project | None] = relationship(back_populates="cameras")
