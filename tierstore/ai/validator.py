"""Validates parsed analysis JSON and coerces it into the registry's vocabulary."""

from datetime import date
from typing import Any

from tierstore.ai.exceptions import AnalysisValidationError
from tierstore.ai.models import DocumentAnalysis
from tierstore.database.models import KeyEntities
from tierstore.registry.constants import CATEGORIES, DEFAULT_CATEGORY

_MAX_TAGS = 10
_MAX_KEY_POINTS = 10
_MAX_ENTITIES_PER_KIND = 25

# Labels models commonly return for a known category.
_CATEGORY_ALIASES = {
    "meeting minutes": "meeting-minutes",
    "minutes": "meeting-minutes",
    "contract": "legal",
    "finance": "financial",
    "grants": "grant",
    "other": DEFAULT_CATEGORY,
}


def validate_and_build(data: dict[str, Any]) -> DocumentAnalysis:
    """Validate raw parsed JSON and build a DocumentAnalysis.

    Unknown categories become ``general``, confidence is clamped to [0, 1]
    and the category is always present among the tags.

    Raises:
        AnalysisValidationError: when a field has the wrong type.
    """
    for name in ("category", "confidence"):
        if name not in data:
            raise AnalysisValidationError(f"Missing required field: {name}")
    category = normalize_category(data["category"])
    tags = _build_tags(data.get("tags"))
    if category not in tags:
        tags.append(category)
    return DocumentAnalysis(
        category=category,
        confidence=clamp_confidence(data["confidence"]),
        subcategory=_optional_str(data.get("subcategory"), "subcategory"),
        summary=_optional_str(data.get("summary"), "summary") or "",
        key_points=_string_list(data.get("key_points"), "key_points")[:_MAX_KEY_POINTS],
        tags=tags,
        entities=_build_entities(data.get("entities")),
        document_date=parse_document_date(data.get("document_date")),
        language=_build_language(data.get("language")),
    )


def normalize_category(raw: Any) -> str:
    if not isinstance(raw, str):
        raise AnalysisValidationError("'category' must be a string")
    cleaned = " ".join(raw.strip().lower().replace("_", " ").split())
    if cleaned in _CATEGORY_ALIASES:
        return _CATEGORY_ALIASES[cleaned]
    hyphenated = cleaned.replace(" ", "-")
    if hyphenated in CATEGORIES:
        return hyphenated
    return DEFAULT_CATEGORY


def clamp_confidence(raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise AnalysisValidationError("'confidence' must be a number")
    return max(0.0, min(1.0, float(raw)))


def parse_document_date(raw: Any) -> date | None:
    """Accept an ISO date string. Anything unparseable is treated as no date."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise AnalysisValidationError("'document_date' must be a string or null")
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


def _optional_str(raw: Any, name: str) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise AnalysisValidationError(f"'{name}' must be a string or null")
    stripped = raw.strip()
    return stripped or None


def _string_list(raw: Any, name: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise AnalysisValidationError(f"'{name}' must be a list")
    items: list[str] = []
    for i, item in enumerate(raw):
        if not isinstance(item, str):
            raise AnalysisValidationError(f"'{name}' item at index {i} must be a string")
        if item.strip():
            items.append(item.strip())
    return items


def _build_tags(raw: Any) -> list[str]:
    seen: set[str] = set()
    tags: list[str] = []
    for tag in _string_list(raw, "tags"):
        lowered = tag.lower()
        if lowered not in seen:
            seen.add(lowered)
            tags.append(lowered)
    return tags[:_MAX_TAGS]


def _build_entities(raw: Any) -> KeyEntities:
    if raw is None:
        return KeyEntities()
    if not isinstance(raw, dict):
        raise AnalysisValidationError("'entities' must be an object")
    return KeyEntities(
        people=_unique(_string_list(raw.get("people"), "entities.people")),
        organizations=_unique(_string_list(raw.get("organizations"), "entities.organizations")),
        places=_unique(_string_list(raw.get("places"), "entities.places")),
    )


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))[:_MAX_ENTITIES_PER_KIND]


def _build_language(raw: Any) -> str | None:
    value = _optional_str(raw, "language")
    if value is None:
        return None
    return value.lower()[:10]
