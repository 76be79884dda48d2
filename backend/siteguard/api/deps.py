from __future__ import annotations

from pathlib import Path
from typing import Callable

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from siteguard.core.config import settings
from siteguard.core.exceptions import (
    ConfigurationError,
    InconsistentStateError,
    InferenceError,
    ProbeError,
    RepairError,
    ReportNotFoundError,
    SaveRejectedError,
    SiteGuardError,
    VideoValidationError,
)
from siteguard.db import SessionLocal, get_db
from siteguard.services.decoder import OpenCVDecoderHandle
from siteguard.services.evidence import EvidenceBinder
from siteguard.services.frame_capture import FrameCaptureEngine
from siteguard.services.gemini_client import GeminiVideoAnalyzer
from siteguard.services.report_store import SqlReportRepository
from siteguard.services.video_repair import VideoIntegrityRepairer

DecoderFactory = Callable[[Path], OpenCVDecoderHandle]

_STATUS_CODES: list[tuple[type[SiteGuardError], int]] = [
    (ReportNotFoundError, 404),
    (VideoValidationError, 400),
    (ProbeError, 400),
    (InconsistentStateError, 409),
    (SaveRejectedError, 422),
    (RepairError, 422),
    (InferenceError, 502),
    (ConfigurationError, 503),
]


def as_http_error(exc: SiteGuardError) -> HTTPException:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def get_repository(db: Session = Depends(get_db)) -> SqlReportRepository:
    return SqlReportRepository(db, settings.thumbnail_dir)


def get_repairer() -> VideoIntegrityRepairer:
    return VideoIntegrityRepairer(ffmpeg_bin=settings.ffmpeg_bin, ffprobe_bin=settings.ffprobe_bin)


def get_analyzer() -> GeminiVideoAnalyzer:
    return GeminiVideoAnalyzer(settings)


def get_binder() -> EvidenceBinder:
    engine = FrameCaptureEngine(
        metadata_timeout=settings.metadata_timeout_sec,
        seek_timeout=settings.seek_timeout_sec,
        jpeg_quality=settings.jpeg_quality,
    )
    return EvidenceBinder(engine)


def get_session_factory():
    return SessionLocal


def get_decoder_factory() -> DecoderFactory:
    return OpenCVDecoderHandle
