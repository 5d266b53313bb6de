from tierstore.config.settings import Settings
from tierstore.extraction.base import BaseTextExtractor
from tierstore.extraction.docx_adapter import DocxExtractor
from tierstore.extraction.exceptions import UnsupportedDocumentTypeError
from tierstore.extraction.pdfplumber_adapter import PdfPlumberExtractor
from tierstore.extraction.pymupdf_adapter import PyMuPdfExtractor
from tierstore.extraction.text_adapter import PlainTextExtractor

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TextExtractorFactory:
    """Picks a text extractor for a document's MIME type."""

    PDF_ENGINES: dict[str, type[BaseTextExtractor]] = {
        "pdfplumber": PdfPlumberExtractor,
        "pymupdf": PyMuPdfExtractor,
    }

    def __init__(self, pdf_extractor: BaseTextExtractor) -> None:
        self._pdf_extractor = pdf_extractor
        self._text_extractor = PlainTextExtractor()
        self._docx_extractor = DocxExtractor()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextExtractorFactory":
        engine = settings.pdf_engine.lower()
        engine_cls = cls.PDF_ENGINES.get(engine)
        if engine_cls is None:
            raise ValueError(
                f"Unknown PDF engine '{engine}'. Choose from: {list(cls.PDF_ENGINES)}"
            )
        return cls(engine_cls())

    def for_mime_type(self, mime_type: str) -> BaseTextExtractor:
        mime = mime_type.split(";", 1)[0].strip().lower()
        if mime == "application/pdf":
            return self._pdf_extractor
        if mime == DOCX_MIME_TYPE:
            return self._docx_extractor
        if mime.startswith("text/") or mime in ("application/json", "application/xml"):
            return self._text_extractor
        raise UnsupportedDocumentTypeError(f"No text extractor for '{mime_type}'")
