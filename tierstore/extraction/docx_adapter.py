import io

from docx import Document

from tierstore.extraction.base import BaseTextExtractor
from tierstore.extraction.exceptions import TextExtractionError


class DocxExtractor(BaseTextExtractor):
    """Extracts paragraph and table text from Word documents using python-docx."""

    def extract(self, data: bytes) -> str:
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:
            raise TextExtractionError(f"python-docx extraction failed: {exc}") from exc
        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n".join(parts).strip()
