from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import Field

from siteguard.schemas.analysis import AnalysisResult, CamelModel
from siteguard.schemas.report import ThumbnailBackfillOut


class VideoOut(CamelModel):
    id: str
    original_filename: str
    file_size: int
    duration: float | None = None
    mime_type: str
    upload_date: datetime
    processing_status: str
    error: str | None = None
    stream_url: str
    metadata: dict = Field(default_factory=dict)


class VideoUploadResponse(CamelModel):
    video: VideoOut
    message: str


class AnalyzeRequest(CamelModel):
    video_id: str
    jsa_context: str | None = None
    user_instructions: str | None = None


class AnalyzeResponse(CamelModel):
    video_id: str
    report_id: str | None = None
    saved: bool
    result: AnalysisResult
    thumbnails: ThumbnailBackfillOut | None = None
    processing_time_seconds: float


class ProjectStatus(str, Enum):
    ACTIVE = "Active"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class CameraStatus(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"
    MAINTENANCE = "Maintenance"
    ERROR = "Error"


class ProjectIn(CamelModel):
    name: str = Field(min_length=1)
    location: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE


class ProjectOut(ProjectIn):
    id: str
    created_at: datetime
    camera_count: int = 0


class CameraIn(CamelModel):
    name: str = Field(min_length=1)
    rtsp_url: str = Field(min_length=1)
    project_id: str | None = None
    status: CameraStatus = CameraStatus.OFFLINE
    location_description: str | None = None


class CameraOut(CameraIn):
    id: str
    created_at: datetime
