CATEGORIES = frozenset(
    {
        "legal",
        "financial",
        "meeting-minutes",
        "policy",
        "grant",
        "report",
        "correspondence",
        "general",
    }
)
DEFAULT_CATEGORY = "general"

VISIBILITIES = frozenset({"public", "private"})
DEFAULT_VISIBILITY = "private"

DOCUMENT_STATUSES = frozenset(
    {"draft", "revised", "final", "approved", "rejected", "archived"}
)
DEFAULT_DOCUMENT_STATUS = "draft"
