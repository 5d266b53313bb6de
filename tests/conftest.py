import io

import pytest
from docx import Document
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas


def build_pdf(*pages: str) -> bytes:
    """Render one line of text per page into a PDF."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    for text in pages:
        if text:
            c.drawString(72, 720, text)
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    return build_pdf("Annual budget for fiscal year 2024")


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a two-page PDF with known text on each page."""
    return build_pdf("Page one content", "Page two content")


@pytest.fixture()
def empty_pdf_bytes() -> bytes:
    """Generate a valid PDF with no text content (blank page)."""
    return build_pdf("")


@pytest.fixture()
def sample_docx_bytes() -> bytes:
    """Generate a Word document with a paragraph and a small table."""
    document = Document()
    document.add_paragraph("Board meeting minutes")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Motion"
    table.rows[0].cells[1].text = "Approved"
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()
