from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, Callable

from sqlalchemy.orm import Session

from siteguard.core.config import Settings, settings as default_settings
from siteguard.core.exceptions import ProbeError, SiteGuardError, VideoValidationError
from siteguard.db import SessionLocal
from siteguard.models import Video
from siteguard.services.video_repair import VideoIntegrityRepairer

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def validate_submission(filename: str | None, content_type: str | None, size: int | None, config: Settings) -> None:
    """Reject uploads that are not videos or exceed the size limit."""
    if not filename:
        raise VideoValidationError("No video file provided")
    if not content_type or not content_type.startswith("video/"):
        raise VideoValidationError("Only video files are allowed")
    if size is not None and size > config.max_video_bytes:
        raise VideoValidationError(f"File too large. Maximum size is {config.max_video_bytes // (1024 * 1024)}MB.")


def _make_repairer(config: Settings) -> VideoIntegrityRepairer:
    return VideoIntegrityRepairer(ffmpeg_bin=config.ffmpeg_bin, ffprobe_bin=config.ffprobe_bin)


def _copy_limited(source: BinaryIO, target: Path, max_bytes: int) -> int:
    written = 0
    with target.open("wb") as handle:
        while True:
            chunk = source.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise VideoValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")
            handle.write(chunk)
    return written


def originals_dir(config: Settings) -> Path:
    return Path(config.upload_dir) / "originals"


def processed_dir(config: Settings) -> Path:
    return Path(config.upload_dir) / "processed"


def register_upload(
    db: Session,
    source: BinaryIO,
    filename: str,
    content_type: str | None,
    config: Settings | None = None,
    repairer: VideoIntegrityRepairer | None = None,
) -> Video:
    """Store an uploaded video and record it as pending.

    Validation (type, size, probed duration) happens before any transcoding;
    a rejected file is removed again.
    """
    config = config or default_settings
    repairer = repairer or _make_repairer(config)
    validate_submission(filename, content_type, None, config)

    video_id = str(uuid.uuid4())
    suffix = Path(filename).suffix.lower() or ".mp4"
    target_dir = originals_dir(config)
    target_dir.mkdir(parents=True, exist_ok=True)
    stored = target_dir / f"{video_id}{suffix}"

    try:
        size = _copy_limited(source, stored, config.max_video_bytes)
        try:
            probe = repairer.probe(stored)
        except ProbeError as exc:
            raise VideoValidationError(f"Could not read video metadata: {exc}") from exc
        if probe.duration_seconds > config.max_video_duration_sec:
            raise VideoValidationError(
                f"Video too long. Maximum duration is {config.max_video_duration_sec / 3600:g} hours."
            )
    except SiteGuardError:
        stored.unlink(missing_ok=True)
        raise

    video = Video(
        id=video_id,
        filename=stored.name,
        original_filename=Path(filename).name,
        file_size=size,
        duration=probe.duration_seconds or None,
        mime_type=content_type or "video/mp4",
        processing_status="pending",
        storage_path=str(stored),
        metadata_json=json.dumps(probe.to_dict()),
    )
    db.add(video)
    db.commit()
    db.refresh(video)
    logger.info("Registered upload %s (%s, %d bytes)", video.id, video.original_filename, size)
    return video


def process_video(
    video_id: str,
    session_factory: Callable[[], Session] = SessionLocal,
    config: Settings | None = None,
    repairer: VideoIntegrityRepairer | None = None,
) -> None:
    """Normalize a pending upload into an H.264/AAC MP4 the AI service accepts."""
    config = config or default_settings
    repairer = repairer or _make_repairer(config)
    db = session_factory()
    try:
        video = db.get(Video, video_id)
        if not video:
            logger.warning("process_video: video %s not found", video_id)
            return

        video.processing_status = "processing"
        video.error = None
        db.commit()

        original = Path(video.storage_path or "")
        out_dir = processed_dir(config)
        out_dir.mkdir(parents=True, exist_ok=True)
        output = out_dir / f"{video.id}.mp4"

        try:
            repairer.repair(original, output, video.duration, force_reencode=True)
            probe = repairer.probe(output)
        except (SiteGuardError, OSError, ValueError) as exc:
            logger.error("Processing failed for video %s: %s", video.id, exc)
            video.processing_status = "error"
            video.error = str(exc)
            db.commit()
            return

        video.processed_filename = output.name
        video.storage_path = str(output)
        video.duration = probe.duration_seconds or video.duration
        video.metadata_json = json.dumps(probe.to_dict())
        video.processing_status = "completed"
        db.commit()
        original.unlink(missing_ok=True)
        logger.info("Video %s processed (%.1fs)", video.id, video.duration or 0.0)
    finally:
        db.close()


def video_file(video: Video) -> Path | None:
    if not video.storage_path:
        return None
    path = Path(video.storage_path)
    return path if path.is_file() else None


def delete_video(db: Session, video: Video, thumbnail_dir: str | Path | None = None) -> None:
    """Remove a video, its stored file and every report that references it."""
    video_id = video.id
    report_ids = [report.id for report in video.reports]
    storage_path = video.storage_path
    db.delete(video)
    db.commit()

    if storage_path:
        Path(storage_path).unlink(missing_ok=True)
    if thumbnail_dir is not None:
        for report_id in report_ids:
            shutil.rmtree(Path(thumbnail_dir) / report_id, ignore_errors=True)
    logger.info("Deleted video %s and %d report(s)", video_id, len(report_ids))
