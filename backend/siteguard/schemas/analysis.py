from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFO = "Info"

    @property
    def rank(self) -> int:
        """Urgency rank, 0 is the most urgent."""
        return list(Severity).index(self)


class ThumbnailStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"


class Thumbnail(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    status: ThumbnailStatus = ThumbnailStatus.PENDING
    data: bytes | None = None

    @model_validator(mode="after")
    def _data_matches_status(self) -> Thumbnail:
        if self.status == ThumbnailStatus.CAPTURED and not self.data:
            raise ValueError("captured thumbnail requires image data")
        if self.status != ThumbnailStatus.CAPTURED and self.data is not None:
            raise ValueError(f"{self.status.value} thumbnail cannot carry image data")
        return self


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Violation(CamelModel):
    description: str
    start_time_seconds: float
    end_time_seconds: float | None = None
    duration_seconds: float | None = None
    severity: Severity
    on_screen_start_time: str | None = None
    on_screen_end_time: str | None = None
    thumbnail: Thumbnail = Field(default_factory=Thumbnail)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity_case_insensitive(cls, value: Any) -> Any:
        if isinstance(value, str):
            for member in Severity:
                if member.value.lower() == value.strip().lower():
                    return member
        return value

    @field_validator("on_screen_start_time", "on_screen_end_time", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _normalize_times(self) -> Violation:
        start = max(0.0, float(self.start_time_seconds))
        end = self.end_time_seconds
        if end is None:
            end = start + max(0.0, float(self.duration_seconds or 0.0))
        end = max(start, float(end))
        self.start_time_seconds = start
        self.end_time_seconds = end
        self.duration_seconds = end - start
        return self

    @property
    def thumbnail_status(self) -> ThumbnailStatus:
        return self.thumbnail.status

    @property
    def is_thumbnail_pending(self) -> bool:
        return self.thumbnail.status == ThumbnailStatus.PENDING

    def with_captured_thumbnail(self, data: bytes) -> Violation:
        self._require_pending()
        return self.model_copy(update={"thumbnail": Thumbnail(status=ThumbnailStatus.CAPTURED, data=data)})

    def with_failed_thumbnail(self) -> Violation:
        self._require_pending()
        return self.model_copy(update={"thumbnail": Thumbnail(status=ThumbnailStatus.FAILED)})

    def reset_thumbnail(self) -> Violation:
        return self.model_copy(update={"thumbnail": Thumbnail()})

    def _require_pending(self) -> None:
        if not self.is_thumbnail_pending:
            raise ValueError(f"thumbnail already resolved as {self.thumbnail.status.value}")


class AnalysisResult(CamelModel):
    summary: str | None = None
    safety_score: int | None = None
    violations: list[Violation] = Field(default_factory=list)
    positive_observations: list[str] = Field(default_factory=list)
    error: str | None = None
    raw_response: str | None = None

    @field_validator("safety_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return value
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise ValueError("safety score must be a finite number")
            return int(min(100, max(0, round(value))))
        return value

    @field_validator("violations", "positive_observations", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def has_error(self) -> bool:
        return bool(self.error)

    @property
    def pending_thumbnails(self) -> int:
        return sum(1 for v in self.violations if v.is_thumbnail_pending)
