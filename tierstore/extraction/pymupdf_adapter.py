import pymupdf

from tierstore.extraction.base import BaseTextExtractor
from tierstore.extraction.exceptions import TextExtractionError


class PyMuPdfExtractor(BaseTextExtractor):
    """Extracts text from PDF using PyMuPDF."""

    def extract(self, data: bytes) -> str:
        try:
            with pymupdf.open(stream=data, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                pages = [page.get_text() for page in doc]
        except Exception as exc:
            raise TextExtractionError(f"pymupdf extraction failed: {exc}") from exc
        return "\n".join(pages).strip()
