from __future__ import annotations

from siteguard.schemas.analysis import Violation
from siteguard.schemas.report import TimelineMarker

MIN_MARKER_WIDTH_PERCENT = 0.5


def format_seconds(total_seconds: float) -> str:
    """Format seconds as MM:SS, or HH:MM:SS once an hour has passed."""
    total = max(0, int(total_seconds))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def timeline_markers(violations: list[Violation], video_duration: float | None) -> list[TimelineMarker]:
    """Place each violation on a 0-100% track; empty when the duration is unknown."""
    if not video_duration or video_duration <= 0:
        return []

    markers = []
    for index, violation in enumerate(violations):
        left = violation.start_time_seconds / video_duration * 100
        width = (violation.duration_seconds or 0.0) / video_duration * 100
        width = min(100.0, max(width, MIN_MARKER_WIDTH_PERCENT))
        left = max(0.0, min(left, 100.0 - width))
        markers.append(
            TimelineMarker(
                index=index,
                severity=violation.severity,
                description=violation.description,
                start_time_seconds=violation.start_time_seconds,
                left_percent=round(left, 3),
                width_percent=round(width, 3),
            )
        )
    return markers
