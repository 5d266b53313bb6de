from dataclasses import dataclass, field
from datetime import date

from tierstore.database.models import KeyEntities


@dataclass(frozen=True)
class DocumentAnalysis:
    """Output of classifying one document."""

    category: str
    confidence: float
    subcategory: str | None = None
    summary: str = ""
    key_points: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    entities: KeyEntities = field(default_factory=KeyEntities)
    document_date: date | None = None
    language: str | None = None
