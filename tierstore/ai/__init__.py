from tierstore.ai.analyzer import DocumentAnalyzer
from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.factory import AnalyzerFactory
from tierstore.ai.keyword_analyzer import KeywordDocumentAnalyzer

__all__ = [
    "AnalyzerFactory",
    "BaseDocumentAnalyzer",
    "DocumentAnalyzer",
    "KeywordDocumentAnalyzer",
]
