import cv2
import numpy as np

from siteguard.schemas.analysis import Severity, Violation
from siteguard.schemas.report import Report
from siteguard.services.report_pdf import render_report_pdf


def _jpeg():
    ok, encoded = cv2.imencode(".jpg", np.full((48, 64, 3), 120, dtype=np.uint8))
    assert ok
    return encoded.tobytes()


def test_pdf_includes_evidence_frames():
    report = Report(
        id="report_0123456789abcdef",
        video_id="video-1",
        video_file_name="north_gate.mp4",
        summary="Crane lift with one exclusion zone breach – “urgent”",
        safety_score=55,
        jsa_context="Tandem lift, exclusion zone 10m",
        video_duration_seconds=3725,
        violations=[
            Violation(description="Worker under suspended load", start_time_seconds=62, end_time_seconds=70, severity=Severity.CRITICAL,
                      on_screen_start_time="10:01:02").with_captured_thumbnail(_jpeg()),
            Violation(description="Tag line missing", start_time_seconds=90, severity=Severity.MEDIUM).with_failed_thumbnail(),
            Violation(description="Loose debris", start_time_seconds=120, severity=Severity.LOW),
        ],
        positive_observations=["Banksman present"],
        operator_comments="Stopped the lift and rebriefed the crew.",
    )

    pdf = render_report_pdf(report)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_pdf_for_minimal_report():
    pdf = render_report_pdf(Report(id="report_x", video_id="v", video_file_name="a.mp4"))
    assert pdf.startswith(b"%PDF")
