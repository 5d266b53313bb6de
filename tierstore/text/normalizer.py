"""ICU-backed folding of free text into a comparable ASCII form.

Filenames, descriptions and extracted document text arrive in any script.
Search and keyword classification compare against the folded form so that
``"Presupuesto Año 2024"`` and ``"presupuesto ano 2024"`` match.
"""

from __future__ import annotations

import re
import unicodedata
from typing import ClassVar

import icu  # type: ignore[import-untyped]


class TextNormalizer:
    _ICU_TRANSFORM: ClassVar[str] = "Any-Latin; Latin-ASCII; Lower"
    _WHITESPACE_RE: ClassVar[re.Pattern[str]] = re.compile(r"\s+")

    def __init__(self) -> None:
        self._transliterator: icu.Transliterator = icu.Transliterator.createInstance(
            self._ICU_TRANSFORM
        )

    def fold(self, text: str) -> str:
        """Return ``text`` transliterated to lowercase ASCII with collapsed whitespace."""
        if not text:
            return ""
        nfc = unicodedata.normalize("NFC", text)
        folded = self._transliterator.transliterate(nfc)
        return self._WHITESPACE_RE.sub(" ", folded).strip()

    def build_search_text(self, *parts: str | None) -> str:
        """Join the searchable fields of a record into one folded string."""
        return self.fold(" ".join(p for p in parts if p))
