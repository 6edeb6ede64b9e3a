import io
import zipfile

import pytest
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n"
    b"\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N"
    b"\x00\x00\x00\x00IEND\xaeB`\x82"
)


def _ooxml_bytes(part_dir: str, part_name: str) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr("_rels/.rels", "<Relationships/>")
        archive.writestr(f"{part_dir}/{part_name}", "<xml/>")
    return buf.getvalue()


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Facility license renewal")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def other_pdf_bytes() -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Resident insurance card")
    c.showPage()
    c.drawString(72, 720, "Page two")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def sample_png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture()
def sample_docx_bytes() -> bytes:
    return _ooxml_bytes("word", "document.xml")


@pytest.fixture()
def sample_xlsx_bytes() -> bytes:
    return _ooxml_bytes("xl", "workbook.xml")


@pytest.fixture()
def sample_zip_bytes() -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("payload.bin", b"\x00" * 32)
    return buf.getvalue()
