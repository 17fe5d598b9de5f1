"""
Transmittal cover sheet rendered with reportlab.

One A4 page per transmittal (continuing onto further pages for long
document lists): header block, parties, line-item table and a
signature strip.
"""
import io
from typing import List, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from app.document_control.application.ports import CoverSheetRenderer
from app.document_control.domain.models import Transmittal

_MARGIN = 2 * cm
_LINE = 0.6 * cm

# (header, x offset from margin)
_COLUMNS: List[Tuple[str, float]] = [
    ("#", 0),
    ("Document No.", 0.8 * cm),
    ("Title", 4.8 * cm),
    ("Rev", 11.3 * cm),
    ("Copies", 12.5 * cm),
    ("Format", 14.0 * cm),
    ("Action", 15.5 * cm),
]


def _fmt_date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


class ReportLabCoverSheetRenderer(CoverSheetRenderer):
    """Render a transmittal as PDF bytes."""

    def render(self, transmittal: Transmittal) -> bytes:
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4)
        c.setTitle(f"Transmittal {transmittal.transmittal_number}")
        width, height = A4

        y = height - _MARGIN
        c.setFont("Helvetica-Bold", 16)
        c.drawString(_MARGIN, y, "DOCUMENT TRANSMITTAL")
        c.setFont("Helvetica-Bold", 12)
        c.drawRightString(width - _MARGIN, y, transmittal.transmittal_number)

        y -= 1.2 * cm
        c.setFont("Helvetica", 10)
        for label, value in (
            ("Subject", transmittal.subject),
            ("From", f"{transmittal.sender} ({transmittal.sender_organization})"),
            ("To", f"{transmittal.recipient} ({transmittal.recipient_organization})"),
            ("Type", transmittal.transmittal_type),
            ("Status", transmittal.status),
            ("Date", _fmt_date(transmittal.transmittal_date)),
            ("Response due", _fmt_date(transmittal.due_date)),
        ):
            c.setFont("Helvetica-Bold", 10)
            c.drawString(_MARGIN, y, f"{label}:")
            c.setFont("Helvetica", 10)
            c.drawString(_MARGIN + 3.2 * cm, y, str(value))
            y -= _LINE

        y -= _LINE
        y = self._draw_table_header(c, y, width)
        c.setFont("Helvetica", 9)
        for index, document in enumerate(transmittal.documents, start=1):
            if y < _MARGIN + 3 * cm:
                c.showPage()
                y = self._draw_table_header(c, height - _MARGIN, width)
                c.setFont("Helvetica", 9)
            values = (
                str(index),
                document.document_number,
                document.title[:40],
                document.revision,
                str(document.copies),
                document.format,
                document.action.replace("_", " "),
            )
            for (_, offset), value in zip(_COLUMNS, values):
                c.drawString(_MARGIN + offset, y, value)
            y -= _LINE

        if transmittal.notes:
            y -= _LINE
            c.setFont("Helvetica-Oblique", 9)
            c.drawString(_MARGIN, y, f"Notes: {transmittal.notes[:110]}")

        c.setFont("Helvetica", 9)
        c.line(_MARGIN, _MARGIN + _LINE, _MARGIN + 6 * cm, _MARGIN + _LINE)
        c.drawString(_MARGIN, _MARGIN, "Received by / date")
        c.line(width - _MARGIN - 6 * cm, _MARGIN + _LINE, width - _MARGIN, _MARGIN + _LINE)
        c.drawString(width - _MARGIN - 6 * cm, _MARGIN, "Sent by / date")

        c.showPage()
        c.save()
        return buffer.getvalue()

    @staticmethod
    def _draw_table_header(c: canvas.Canvas, y: float, width: float) -> float:
        c.setFont("Helvetica-Bold", 9)
        for header, offset in _COLUMNS:
            c.drawString(_MARGIN + offset, y, header)
        c.line(_MARGIN, y - 0.2 * cm, width - _MARGIN, y - 0.2 * cm)
        return y - _LINE
