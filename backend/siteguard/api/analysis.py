from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from siteguard.api.deps import as_http_error, get_analyzer, get_binder, get_decoder_factory, get_repository
from siteguard.core.exceptions import SiteGuardError
from siteguard.db import get_db
from siteguard.models import Video
from siteguard.schemas.report import ThumbnailBackfillOut
from siteguard.schemas.video import AnalyzeRequest, AnalyzeResponse
from siteguard.services.evidence import EvidenceBinder
from siteguard.services.gemini_client import GeminiVideoAnalyzer
from siteguard.services.ingest import video_file
from siteguard.services.report_store import SqlReportRepository
from siteguard.services.response_parser import parse_analysis_response
from siteguard.services.session import AnalysisSession, UploadContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_video(
    body: AnalyzeRequest,
    db: Session = Depends(get_db),
    repository: SqlReportRepository = Depends(get_repository),
    analyzer: GeminiVideoAnalyzer = Depends(get_analyzer),
    binder: EvidenceBinder = Depends(get_binder),
    decoder_factory=Depends(get_decoder_factory),
) -> AnalyzeResponse:
    """Run a processed video through Gemini, attach evidence frames and save the report."""
    video = await asyncio.to_thread(db.get, Video, body.video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    if video.processing_status != "completed":
        raise HTTPException(status_code=400, detail=f"Video is not ready for analysis (status: {video.processing_status})")
    path = video_file(video)
    if path is None:
        raise HTTPException(status_code=404, detail="Processed video file not found")

    started = time.monotonic()
    session = AnalysisSession(repository)
    token = session.begin_analysis(body.jsa_context or "", body.user_instructions or "")

    try:
        uploaded = await analyzer.upload(path, mime_type="video/mp4", display_name=video.original_filename)
        session.attach_upload(
            token,
            UploadContext(video_id=video.id, file_name=video.original_filename, file_uri=uploaded.uri),
        )
        raw_text = await analyzer.analyze(uploaded, body.jsa_context, body.user_instructions)
    except SiteGuardError as exc:
        raise as_http_error(exc) from exc

    result = parse_analysis_response(raw_text)
    session.complete_analysis(token, result)

    thumbnails = None
    if result.violations:
        async with decoder_factory(path) as handle:
            outcome = await binder.bind_session(session, handle)
        thumbnails = ThumbnailBackfillOut(
            report_id="",
            attempted=outcome.attempted,
            captured=outcome.captured,
            failed=outcome.failed,
            hard_failures=outcome.hard_failures,
        )

    elapsed = round(time.monotonic() - started, 2)
    report_id = None
    if session.can_save():
        report = await asyncio.to_thread(session.save, video.duration, elapsed)
        report_id = report.id
        if thumbnails is not None:
            thumbnails.report_id = report_id
    else:
        logger.warning("Analysis of video %s not saved: %s", video.id, session.live_result.error)

    return AnalyzeResponse(
        video_id=video.id,
        report_id=report_id,
        saved=report_id is not None,
        result=session.live_result,
        thumbnails=thumbnails,
        processing_time_seconds=elapsed,
    )
