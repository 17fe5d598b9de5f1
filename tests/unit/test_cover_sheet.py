from datetime import datetime

from app.document_control.domain.models import Transmittal, TransmittalDocument
from app.document_control.infrastructure.cover_sheet import ReportLabCoverSheetRenderer


def make_transmittal(document_count, **overrides):
    values = dict(
        id="T-1",
        transmittal_number="IEMS-TRN-2601-001",
        project_id="P-100",
        subject="Structural drawings for level 2",
        sender="Sam Site",
        sender_organization="Main Contractor",
        recipient="consultant@example.com",
        recipient_organization="Consultant",
        status="sent",
        transmittal_type="drawing",
        created_by="u-site",
        created_at=datetime(2026, 1, 17, 10, 0),
        updated_at=datetime(2026, 1, 17, 11, 0),
        transmittal_date=datetime(2026, 1, 17, 11, 0),
        documents=[
            TransmittalDocument(
                document_id=f"DOC-{i}",
                document_number=f"STR-{i:03d}",
                title=f"Reinforcement detail sheet {i} with a deliberately long title",
                revision="A",
                action="for_construction",
                item_index=i,
            )
            for i in range(document_count)
        ],
    )
    values.update(overrides)
    return Transmittal(**values)


def test_renders_pdf():
    pdf = ReportLabCoverSheetRenderer().render(make_transmittal(3, notes="Originals to follow"))

    assert pdf.startswith(b"%PDF")
    assert pdf.rstrip().endswith(b"%%EOF")


def test_long_document_list_continues_on_more_pages():
    renderer = ReportLabCoverSheetRenderer()

    short = renderer.render(make_transmittal(2))
    long = renderer.render(make_transmittal(80))

    assert long.startswith(b"%PDF")
    assert len(long) > len(short)


def test_missing_dates_render():
    pdf = ReportLabCoverSheetRenderer().render(
        make_transmittal(0, status="draft", transmittal_date=None)
    )

    assert pdf.startswith(b"%PDF")
