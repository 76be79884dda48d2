from __future__ import annotations

import json

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from siteguard.api.deps import as_http_error, get_repairer, get_session_factory
from siteguard.core.config import settings
from siteguard.core.exceptions import SiteGuardError
from siteguard.db import get_db
from siteguard.models import Video
from siteguard.schemas.video import VideoOut, VideoUploadResponse
from siteguard.services.ingest import delete_video, process_video, register_upload, validate_submission, video_file
from siteguard.services.video_repair import VideoIntegrityRepairer

router = APIRouter(prefix="/video", tags=["video"])


def video_to_out(video: Video) -> VideoOut:
    return VideoOut(
        id=video.id,
        original_filename=video.original_filename,
        file_size=video.file_size,
        duration=video.duration,
        mime_type=video.mime_type,
        upload_date=video.upload_date,
        processing_status=video.processing_status,
        error=video.error,
        stream_url=f"/api/video/{video.id}/stream",
        metadata=json.loads(video.metadata_json or "{}"),
    )


def _get_video(db: Session, video_id: str) -> Video:
    video = db.get(Video, video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    return video


@router.post("/upload", response_model=VideoUploadResponse)
def upload_video(
    background_tasks: BackgroundTasks,
    video: UploadFile = File(...),
    db: Session = Depends(get_db),
    repairer: VideoIntegrityRepairer = Depends(get_repairer),
    session_factory=Depends(get_session_factory),
) -> VideoUploadResponse:
    try:
        validate_submission(video.filename, video.content_type, video.size, settings)
        row = register_upload(db, video.file, video.filename, video.content_type, settings, repairer)
    except SiteGuardError as exc:
        raise as_http_error(exc) from exc

    background_tasks.add_task(process_video, row.id, session_factory=session_factory, repairer=repairer)
    return VideoUploadResponse(video=video_to_out(row), message="Video uploaded successfully. Processing started.")


@router.get("", response_model=list[VideoOut])
def list_videos(limit: int = 50, offset: int = 0, db: Session = Depends(get_db)) -> list[VideoOut]:
    stmt = select(Video).order_by(desc(Video.upload_date)).limit(max(1, min(limit, 500))).offset(max(0, offset))
    return [video_to_out(v) for v in db.execute(stmt).scalars().all()]


@router.get("/{video_id}", response_model=VideoOut)
def get_video(video_id: str, db: Session = Depends(get_db)) -> VideoOut:
    return video_to_out(_get_video(db, video_id))


@router.get("/{video_id}/stream")
def stream_video(video_id: str, db: Session = Depends(get_db)) -> FileResponse:
    video = _get_video(db, video_id)
    path = video_file(video)
    if path is None:
        raise HTTPException(status_code=404, detail="Video file not found")
    media_type = "video/mp4" if video.processing_status == "completed" else video.mime_type
    return FileResponse(
        path, media_type=media_type, filename=video.original_filename, content_disposition_type="inline"
    )


@router.delete("/{video_id}")
def remove_video(video_id: str, db: Session = Depends(get_db)) -> dict:
    video = _get_video(db, video_id)
    delete_video(db, video, settings.thumbnail_dir)
    return {"deleted": video_id}
