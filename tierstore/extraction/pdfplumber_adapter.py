import io

import pdfplumber

from tierstore.extraction.base import BaseTextExtractor
from tierstore.extraction.exceptions import TextExtractionError


class PdfPlumberExtractor(BaseTextExtractor):
    """Extracts text from PDF using pdfplumber."""

    def extract(self, data: bytes) -> str:
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:
            raise TextExtractionError(f"pdfplumber extraction failed: {exc}") from exc
        return "\n".join(pages).strip()
