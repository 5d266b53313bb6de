from abc import ABC, abstractmethod

from tierstore.ai.models import DocumentAnalysis


class BaseDocumentAnalyzer(ABC):
    """Contract for all document analysis adapters."""

    @abstractmethod
    def summarize(self, text: str) -> str:
        """Return a two to three sentence summary of ``text``.

        Raises:
            AnalysisError: on any failure.
        """

    @abstractmethod
    def extract_key_points(self, text: str, num_points: int = 5) -> list[str]:
        """Return at most ``num_points`` short statements capturing the document.

        Raises:
            AnalysisError: on any failure.
        """

    @abstractmethod
    def classify(self, text: str, filename: str) -> DocumentAnalysis:
        """Classify a document into the registry's category set.

        Args:
            text: Extracted document text, already truncated by the caller.
            filename: Original filename, a strong hint for short documents.

        Returns:
            DocumentAnalysis with a known category and confidence in [0, 1].

        Raises:
            AnalysisError: on any failure.
        """
