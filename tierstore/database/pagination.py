import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

MAX_PER_PAGE = 100


@dataclass
class Page(Generic[T]):
    """One page of results plus the size of the full result set."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0


def page_bounds(page: int, per_page: int, max_per_page: int = MAX_PER_PAGE) -> tuple[int, int]:
    """Translate a 1-based page number into (limit, offset).

    Raises:
        ValueError: if ``page`` < 1 or ``per_page`` is outside 1..max_per_page.
    """
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValueError(f"page must be an integer >= 1, got {page!r}")
    if (
        isinstance(per_page, bool)
        or not isinstance(per_page, int)
        or not 1 <= per_page <= max_per_page
    ):
        raise ValueError(f"per_page must be between 1 and {max_per_page}, got {per_page!r}")
    return per_page, (page - 1) * per_page
