import pytest

from siteguard.core.exceptions import InconsistentStateError, ReportNotFoundError, SaveRejectedError
from siteguard.schemas.analysis import AnalysisResult, Severity, ThumbnailStatus, Violation
from siteguard.schemas.report import Report, ReportStatus
from siteguard.services.report_store import InMemoryReportRepository
from siteguard.services.session import (
    AnalysisSession,
    HistoricalReport,
    LifecycleState,
    LiveAnalysis,
    UploadContext,
    can_save,
)


def _violation(start=1.0):
    return Violation(description="Worker without harness", start_time_seconds=start, severity=Severity.HIGH)


@pytest.fixture
def repository():
    return InMemoryReportRepository()


@pytest.fixture
def session(repository):
    return AnalysisSession(repository)


def _complete(session, result, video_id="v1"):
    token = session.begin_analysis("Scaffold erection", "Focus on fall protection")
    session.attach_upload(token, UploadContext(video_id=video_id, file_name="site.mp4", file_uri="files/abc"))
    assert session.complete_analysis(token, result)
    return token


@pytest.mark.parametrize(
    "result, expected",
    [
        (None, False),
        (AnalysisResult(summary="ok"), True),
        (AnalysisResult(error="Model failed"), False),
        (AnalysisResult(error="Partial data", violations=[_violation()]), True),
    ],
)
def test_can_save(result, expected):
    assert can_save(result) is expected


def test_save_creates_then_updates(session, repository):
    _complete(session, AnalysisResult(summary="Two hazards", safety_score=60, violations=[_violation()]))
    session.set_operator_comments("Crew briefed")

    saved = session.save(video_duration_seconds=20.0, processing_time_seconds=3.2)

    assert saved.id.startswith("report_")
    assert session.state == LifecycleState.SAVED
    assert session.active_report.id == saved.id
    assert saved.jsa_context == "Scaffold erection"
    assert saved.user_prompt == "Focus on fall protection"
    assert saved.operator_comments == "Crew briefed"
    assert saved.video_file_uri == "files/abc"
    assert [r.id for r in session.history] == [saved.id]

    session.set_report_status(ReportStatus.ACTION_REQUIRED)
    again = session.save()

    assert again.id == saved.id
    assert again.status == ReportStatus.ACTION_REQUIRED
    assert session.state == LifecycleState.UPDATED
    assert len(repository.list()) == 1


def test_error_without_violations_cannot_be_saved(session, repository):
    _complete(session, AnalysisResult(error="Model output was not valid JSON"))

    assert session.can_save() is False
    with pytest.raises(SaveRejectedError):
        session.save()
    assert repository.list() == []


def test_save_without_result_is_rejected(session):
    with pytest.raises(SaveRejectedError):
        session.save()


def test_stale_response_is_ignored(session):
    first = session.begin_analysis()
    second = session.begin_analysis()

    assert session.complete_analysis(first, AnalysisResult(summary="old")) is False
    assert session.attach_upload(first, UploadContext(video_id="v0", file_name="old.mp4")) is False
    assert session.in_flight
    assert session.complete_analysis(second, AnalysisResult(summary="new"))
    assert session.live_result.summary == "new"
    assert session.upload is None


def test_selecting_a_report_abandons_in_flight_analysis(session, repository):
    stored = repository.create(Report(video_id="v1", video_file_name="a.mp4", operator_comments="Earlier note"))
    token = session.begin_analysis()

    session.select_report(stored.id)

    assert session.in_flight is False
    assert isinstance(session.display, HistoricalReport)
    assert session.active_report.id == stored.id
    assert session.operator_comments == "Earlier note"
    assert session.complete_analysis(token, AnalysisResult(summary="late")) is False
    assert isinstance(session.display, HistoricalReport)


def test_selecting_unknown_report_raises(session):
    with pytest.raises(ReportNotFoundError):
        session.select_report("report_missing")


def test_review_scenario_updates_comments_and_status(session, repository):
    stored = repository.create(Report(video_id="v1", video_file_name="a.mp4", violations=[_violation()]))
    session.refresh_history()
    session.select_report(stored.id)
    session.set_operator_comments("Foreman notified")
    session.set_report_status(ReportStatus.REVIEWED)

    updated = session.save()

    assert updated.id == stored.id
    assert updated.operator_comments == "Foreman notified"
    assert updated.status == ReportStatus.REVIEWED
    assert session.viewed_report.status == ReportStatus.REVIEWED
    assert session.history[0].operator_comments == "Foreman notified"
    assert repository.get(stored.id).status == ReportStatus.REVIEWED


def test_update_with_tags(session, repository):
    stored = repository.create(Report(video_id="v1", video_file_name="a.mp4"))
    session.select_report(stored.id)

    updated = session.update(tags="scaffold,harness")

    assert updated.tags == "scaffold,harness"
    assert repository.get(stored.id).tags == "scaffold,harness"


def test_mismatched_active_and_viewed_report_is_refused(session, repository):
    first = repository.create(Report(video_id="v1", video_file_name="a.mp4"))
    second = repository.create(Report(video_id="v1", video_file_name="b.mp4"))
    session.select_report(first.id)
    session.active_report = repository.get(second.id)

    with pytest.raises(InconsistentStateError):
        session.save()
    with pytest.raises(InconsistentStateError):
        session.update()


def test_update_without_active_report_is_refused(session):
    with pytest.raises(InconsistentStateError):
        session.update()


def test_apply_evidence_refuses_a_replaced_target(session):
    _complete(session, AnalysisResult(violations=[_violation()]))
    target = session.display
    session.begin_analysis()

    captured = [v.with_captured_thumbnail(b"\xff\xd8") for v in target.violations]
    assert session.apply_evidence(target, captured) is False
    assert session.display is None


def test_apply_evidence_on_live_result(session):
    _complete(session, AnalysisResult(violations=[_violation()]))
    target = session.display

    assert session.apply_evidence(target, [v.with_captured_thumbnail(b"\xff\xd8") for v in target.violations])
    assert isinstance(session.display, LiveAnalysis)
    assert session.display.token == target.token
    assert session.live_result.violations[0].thumbnail_status == ThumbnailStatus.CAPTURED


def test_reset_thumbnails_marks_everything_pending(session, repository):
    violation = _violation().with_captured_thumbnail(b"\xff\xd8")
    stored = repository.create(Report(video_id="v1", video_file_name="a.mp4", violations=[violation]))
    session.select_report(stored.id)

    session.reset_thumbnails()

    assert session.viewed_report.violations[0].is_thumbnail_pending
    assert session.active_report.violations[0].is_thumbnail_pending
