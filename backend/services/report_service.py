"""Renders the cached allocation result as a downloadable CSV or PDF."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from io import BytesIO
from typing import Optional

import pandas as pd
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from backend.domain.models import AllocationResult
from backend.services.allocation_service import AllocationStateStore
from backend.utils.config import Settings, get_settings


REPORT_COLUMNS = ("Student Name", "Matric Number", "Block", "Room Number")


class ReportError(Exception):
    """Base exception for report rendering failures."""


class ResultNotFoundError(ReportError):
    """Raised when the requested result id is not the cached last result."""


class InvalidReportFormatError(ReportError):
    """Raised for formats other than csv and pdf."""


class ReportFormat(str, Enum):
    CSV = "csv"
    PDF = "pdf"


@dataclass(frozen=True)
class RenderedReport:
    content: bytes
    content_type: str
    filename: str


def render_csv(result: AllocationResult) -> bytes:
    frame = pd.DataFrame(
        [
            (view.student_name, view.matric_number, view.block, view.room_number)
            for view in result.allocations
        ],
        columns=list(REPORT_COLUMNS),
    )
    body = frame.to_csv(
        index=False,
        header=False,
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )
    return (",".join(REPORT_COLUMNS) + "\n" + body).encode("utf-8")


def _format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    except ValueError:
        return value


def render_pdf(result: AllocationResult) -> bytes:
    """Plain text layout: title, summary, then one line per allocation."""
    buffer = BytesIO()
    page_width, page_height = A4
    margin = 18 * mm
    line_height = 5.5 * mm
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle(f"Room Allocation Report ({result.id})")

    y = page_height - margin

    def write(text: str, font: str = "Helvetica", size: int = 10) -> None:
        nonlocal y
        if y < margin:
            pdf.showPage()
            y = page_height - margin
        pdf.setFont(font, size)
        pdf.drawString(margin, y, text)
        y -= line_height

    write(f"Room Allocation Report ({result.id})", font="Helvetica-Bold", size=16)
    y -= line_height / 2
    write(f"Generated: {_format_timestamp(result.timestamp)}")
    write(f"Status: {result.status.value.upper()}")
    y -= line_height / 2
    write("Summary", font="Helvetica-Bold", size=12)
    write(f"Total Students Processed: {result.total_students}")
    write(f"Successfully Allocated: {result.students_allocated}")
    write(f"Unallocated / Conflicts: {result.students_unallocated}")
    y -= line_height / 2
    write("Allocations", font="Helvetica-Bold", size=12)
    for view in result.allocations:
        write(
            f"{view.student_name} ({view.matric_number}) -> {view.block} {view.room_number}",
            font="Courier",
            size=9,
        )
    if result.conflicts:
        y -= line_height / 2
        write("Conflicts", font="Helvetica-Bold", size=12)
        for conflict in result.conflicts:
            write(f"{conflict.student_name}: {conflict.issue}", font="Courier", size=9)

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


class ReportService:
    """Only the most recent result is retrievable; there is no archive."""

    def __init__(
        self,
        state: AllocationStateStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._state = state
        self._settings = settings or get_settings()

    def render(self, result_id: str, report_format: str) -> RenderedReport:
        try:
            resolved_format = ReportFormat(report_format)
        except ValueError as exc:
            raise InvalidReportFormatError("Invalid format. Use 'csv' or 'pdf'") from exc

        result = self._state.get_last_result()
        if result is None or result.id != result_id:
            raise ResultNotFoundError("Allocation result not found")

        filename = (
            f"{self._settings.allocation_report_filename_prefix}-{result.id}."
            f"{resolved_format.value}"
        )
        if resolved_format is ReportFormat.CSV:
            return RenderedReport(
                content=render_csv(result),
                content_type="text/csv",
                filename=filename,
            )
        return RenderedReport(
            content=render_pdf(result),
            content_type="application/pdf",
            filename=filename,
        )
