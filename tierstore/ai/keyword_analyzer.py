"""Offline document analyzer driven by keyword and pattern heuristics.

Backs the ``example`` AI provider: no network calls, deterministic output,
useful for local development and tests. Its confidence never reaches the
high band, so every result it produces is routed to human review.
"""

import re
from datetime import date, datetime
from typing import ClassVar

from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.models import DocumentAnalysis
from tierstore.database.models import KeyEntities
from tierstore.registry.constants import DEFAULT_CATEGORY
from tierstore.text.normalizer import TextNormalizer


class KeywordDocumentAnalyzer(BaseDocumentAnalyzer):
    CATEGORY_KEYWORDS: ClassVar[dict[str, tuple[str, ...]]] = {
        "legal": ("articles of incorporation", "bylaws", "contract", "agreement", "legal"),
        "financial": ("budget", "financial", "invoice", "receipt", "tax", "990", "audit"),
        "meeting-minutes": ("minutes", "meeting", "board meeting", "committee meeting"),
        "grant": ("grant", "proposal", "funding", "application"),
        "policy": ("policy", "procedure", "guidelines", "handbook"),
        "report": ("report", "annual report", "quarterly"),
        "correspondence": ("dear", "sincerely", "letter", "memo"),
    }

    BASE_CONFIDENCE: ClassVar[float] = 0.5
    DATE_BONUS: ClassVar[float] = 0.1
    CATEGORY_BONUS: ClassVar[float] = 0.1

    _DATE_RE: ClassVar[re.Pattern[str]] = re.compile(
        r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}[/-]\d{1,2}[/-]\d{1,2})\b"
    )
    _DATE_FORMATS: ClassVar[tuple[str, ...]] = (
        "%Y-%m-%d",
        "%Y/%m/%d",
        "%m/%d/%Y",
        "%m-%d-%Y",
        "%m/%d/%y",
        "%m-%d-%y",
    )
    _NAME_RE: ClassVar[re.Pattern[str]] = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")
    _SENTENCE_RE: ClassVar[re.Pattern[str]] = re.compile(r"(?<=[.!?])\s+")
    _ENGLISH_WORDS: ClassVar[tuple[str, ...]] = (
        "the", "and", "is", "to", "in", "of", "for", "on", "with",
    )
    _CLASSIFY_SAMPLE_CHARS: ClassVar[int] = 1000
    _SUMMARY_CHARS: ClassVar[int] = 200

    def __init__(self, normalizer: TextNormalizer | None = None) -> None:
        self._normalizer = normalizer or TextNormalizer()
        self._keyword_patterns = {
            category: [(k, re.compile(rf"\b{re.escape(k)}\b")) for k in keywords]
            for category, keywords in self.CATEGORY_KEYWORDS.items()
        }

    def summarize(self, text: str) -> str:
        flat = " ".join(text.split())
        if len(flat) <= self._SUMMARY_CHARS:
            return flat
        return flat[: self._SUMMARY_CHARS].rstrip() + "..."

    def extract_key_points(self, text: str, num_points: int = 5) -> list[str]:
        sentences = [s.strip() for s in self._SENTENCE_RE.split(" ".join(text.split()))]
        return [s for s in sentences if len(s) > 20][:num_points]

    def classify(self, text: str, filename: str) -> DocumentAnalysis:
        category, matched = self.match_category(text, filename)
        document_date = self.find_date(text)
        confidence = self.BASE_CONFIDENCE
        if document_date is not None:
            confidence += self.DATE_BONUS
        if matched:
            confidence += self.CATEGORY_BONUS
        return DocumentAnalysis(
            category=category,
            confidence=round(confidence, 2),
            summary=self.summarize(text),
            key_points=self.extract_key_points(text),
            tags=[category],
            entities=KeyEntities(people=self._find_names(text)),
            document_date=document_date,
            language=self._detect_language(text),
        )

    def match_category(self, text: str, filename: str) -> tuple[str, str | None]:
        """Return the first category whose keyword occurs, and the keyword itself."""
        haystack = self._normalizer.fold(
            f"{filename} {text[: self._CLASSIFY_SAMPLE_CHARS]}"
        ).replace("_", " ")
        for category, patterns in self._keyword_patterns.items():
            for keyword, pattern in patterns:
                if pattern.search(haystack):
                    return category, keyword
        return DEFAULT_CATEGORY, None

    def find_date(self, text: str) -> date | None:
        for match in self._DATE_RE.finditer(text):
            raw = match.group(1)
            for fmt in self._DATE_FORMATS:
                try:
                    return datetime.strptime(raw, fmt).date()
                except ValueError:
                    continue
        return None

    def _find_names(self, text: str) -> list[str]:
        return list(dict.fromkeys(self._NAME_RE.findall(text)))[:10]

    def _detect_language(self, text: str) -> str | None:
        sample = f" {' '.join(text[:500].lower().split())} "
        count = sum(sample.count(f" {word} ") for word in self._ENGLISH_WORDS)
        return "en" if count > 5 else None
