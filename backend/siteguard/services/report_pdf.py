from __future__ import annotations

import io

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from siteguard.schemas.analysis import ThumbnailStatus
from siteguard.schemas.report import Report
from siteguard.utils.timecode import format_seconds

THUMB_WIDTH_MM = 60


def _text(value: str | None) -> str:
    # core fonts only cover latin-1
    return (value or "-").encode("latin-1", "replace").decode("latin-1")


def _line(pdf: FPDF, height: float, text: str) -> None:
    pdf.multi_cell(0, height, _text(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_report_pdf(report: Report) -> bytes:
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    _line(pdf, 10, "SiteGuard Safety Analysis Report")

    pdf.set_font("Helvetica", size=11)
    _line(pdf, 7, f"Report ID: {report.id}")
    _line(pdf, 7, f"Video: {report.video_file_name}")
    _line(pdf, 7, f"Analyzed: {report.analysis_date_time:%Y-%m-%d %H:%M} UTC")
    _line(pdf, 7, f"Status: {report.status.value}")
    score = "-" if report.safety_score is None else f"{report.safety_score}/100"
    _line(pdf, 7, f"Safety score: {score}")
    if report.video_duration_seconds:
        _line(pdf, 7, f"Duration: {format_seconds(report.video_duration_seconds)}")

    if report.summary:
        pdf.ln(3)
        pdf.set_font("Helvetica", "B", 13)
        _line(pdf, 8, "Summary")
        pdf.set_font("Helvetica", size=11)
        _line(pdf, 6, report.summary)

    if report.jsa_context:
        pdf.ln(3)
        pdf.set_font("Helvetica", "B", 13)
        _line(pdf, 8, "JSA / Hazard Context")
        pdf.set_font("Helvetica", size=10)
        _line(pdf, 5, report.jsa_context)

    pdf.ln(3)
    pdf.set_font("Helvetica", "B", 13)
    _line(pdf, 8, f"Violations ({len(report.violations)})")

    for index, violation in enumerate(report.violations, start=1):
        pdf.set_font("Helvetica", "B", 11)
        window = f"{format_seconds(violation.start_time_seconds)}-{format_seconds(violation.end_time_seconds or 0)}"
        _line(pdf, 6, f"{index}. [{violation.severity.value}] {window}")
        pdf.set_font("Helvetica", size=10)
        _line(pdf, 5, violation.description)
        if violation.on_screen_start_time:
            _line(pdf, 5, f"On-screen: {violation.on_screen_start_time} to {violation.on_screen_end_time or '-'}")

        if violation.thumbnail.status == ThumbnailStatus.CAPTURED:
            pdf.image(io.BytesIO(violation.thumbnail.data), w=THUMB_WIDTH_MM)
        elif violation.thumbnail.status == ThumbnailStatus.FAILED:
            pdf.set_font("Helvetica", "I", 9)
            _line(pdf, 5, "Evidence frame unavailable")
        pdf.ln(2)

    if report.positive_observations:
        pdf.set_font("Helvetica", "B", 13)
        _line(pdf, 8, "Positive Observations")
        pdf.set_font("Helvetica", size=10)
        for observation in report.positive_observations:
            _line(pdf, 5, f"- {observation}")

    if report.operator_comments:
        pdf.ln(3)
        pdf.set_font("Helvetica", "B", 13)
        _line(pdf, 8, "Operator Comments")
        pdf.set_font("Helvetica", size=10)
        _line(pdf, 5, report.operator_comments)

    return bytes(pdf.output())

