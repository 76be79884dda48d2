from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siteguard.core.config import settings
from siteguard.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _storage_ok() -> bool:
    dirs = [Path(settings.upload_dir), Path(settings.thumbnail_dir)]
    return all(d.is_dir() and os.access(d, os.W_OK) for d in dirs)


def _binaries_ok() -> bool:
    return all(shutil.which(binary) for binary in (settings.ffmpeg_bin, settings.ffprobe_bin))


@router.get("/detailed")
def detailed_health(db: Session = Depends(get_db)) -> JSONResponse:
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "OK"
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        checks["database"] = "ERROR"

    checks["storage"] = "OK" if _storage_ok() else "ERROR"
    checks["ffmpeg"] = "OK" if _binaries_ok() else "ERROR"
    checks["gemini"] = "OK" if settings.gemini_configured else "NOT_CONFIGURED"

    healthy = all(value == "OK" for value in checks.values())
    payload = {
        "status": "OK" if healthy else "DEGRADED",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "checks": checks,
    }
    return JSONResponse(payload, status_code=200 if healthy else 503)
