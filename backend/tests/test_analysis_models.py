import pytest
from pydantic import ValidationError

from siteguard.schemas.analysis import AnalysisResult, Severity, Thumbnail, ThumbnailStatus, Violation


def _violation(**overrides):
    payload = {"description": "No hard hat", "start_time_seconds": 10.0, "end_time_seconds": 12.0, "severity": "Medium"}
    payload.update(overrides)
    return Violation(**payload)


@pytest.mark.parametrize(
    "start, end, duration, expected",
    [
        (10.0, 12.0, None, (10.0, 12.0, 2.0)),
        (10.0, None, 4.5, (10.0, 14.5, 4.5)),
        (10.0, 8.0, None, (10.0, 10.0, 0.0)),
        (-2.0, 3.0, 99.0, (0.0, 3.0, 3.0)),
        (5.0, None, None, (5.0, 5.0, 0.0)),
    ],
)
def test_violation_times_are_consistent(start, end, duration, expected):
    violation = _violation(start_time_seconds=start, end_time_seconds=end, duration_seconds=duration)

    assert (violation.start_time_seconds, violation.end_time_seconds, violation.duration_seconds) == expected
    assert violation.end_time_seconds >= violation.start_time_seconds
    assert violation.duration_seconds == pytest.approx(violation.end_time_seconds - violation.start_time_seconds)


def test_violation_accepts_camel_case_payload():
    violation = Violation.model_validate(
        {
            "description": "Open trench",
            "startTimeSeconds": 1,
            "endTimeSeconds": 2,
            "severity": "LOW",
            "onScreenStartTime": " ",
            "onScreenEndTime": "07:48:18",
        }
    )
    assert violation.severity == Severity.LOW
    assert violation.on_screen_start_time is None
    assert violation.on_screen_end_time == "07:48:18"


def test_unknown_severity_is_rejected():
    with pytest.raises(ValidationError):
        _violation(severity="Catastrophic")


def test_severity_rank_orders_by_urgency():
    ordered = sorted([Severity.INFO, Severity.CRITICAL, Severity.MEDIUM], key=lambda s: s.rank)
    assert ordered == [Severity.CRITICAL, Severity.MEDIUM, Severity.INFO]


def test_thumbnail_transitions_are_one_way():
    pending = _violation()
    captured = pending.with_captured_thumbnail(b"jpeg")

    assert pending.thumbnail_status == ThumbnailStatus.PENDING
    assert captured.thumbnail_status == ThumbnailStatus.CAPTURED
    assert captured.thumbnail.data == b"jpeg"
    with pytest.raises(ValueError):
        captured.with_failed_thumbnail()
    with pytest.raises(ValueError):
        pending.with_failed_thumbnail().with_captured_thumbnail(b"late")

    assert captured.reset_thumbnail().is_thumbnail_pending


def test_thumbnail_data_must_match_status():
    with pytest.raises(ValidationError):
        Thumbnail(status=ThumbnailStatus.CAPTURED)
    with pytest.raises(ValidationError):
        Thumbnail(status=ThumbnailStatus.FAILED, data=b"x")


def test_thumbnail_bytes_survive_json():
    violation = _violation().with_captured_thumbnail(b"\xff\xd8\xff\xe0jpeg")
    restored = Violation.model_validate_json(violation.model_dump_json(by_alias=True))
    assert restored.thumbnail.data == b"\xff\xd8\xff\xe0jpeg"


@pytest.mark.parametrize("score, expected", [(87.6, 88), (140, 100), (-3, 0), (None, None), ("150", 100), (" 42.6 ", 43), ("-7", 0)])
def test_safety_score_is_clamped(score, expected):
    assert AnalysisResult(safety_score=score).safety_score == expected


@pytest.mark.parametrize("score", [float("inf"), float("-inf"), float("nan"), "Infinity", "high"])
def test_unusable_safety_score_is_rejected(score):
    with pytest.raises(ValidationError):
        AnalysisResult(safety_score=score)


def test_null_lists_become_empty():
    result = AnalysisResult.model_validate({"violations": None, "positiveObservations": None})
    assert result.violations == []
    assert result.positive_observations == []
    assert result.pending_thumbnails == 0
