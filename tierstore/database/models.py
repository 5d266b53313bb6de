from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass
class FileRecord:
    """Represents a row from the storage_files table."""

    file_id: str
    filename: str
    mime_type: str
    size_bytes: int
    category: str = "general"
    subcategory: str | None = None
    tags: list[str] = field(default_factory=list)
    description: str = ""
    visibility: str = "private"
    document_author: str | None = None
    document_status: str = "draft"
    has_physical_copy: bool = False
    physical_location: str | None = None
    physical_verified_at: datetime | None = None
    physical_verified_by: int | None = None
    checksum_sha256: str = ""
    folder_path: str = ""
    current_version: int = 1
    access_count: int = 0
    last_accessed_at: datetime | None = None
    created_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_public(self) -> bool:
        return self.visibility == "public"


@dataclass
class FileLocation:
    """Represents a row from the storage_locations table."""

    file_id: str
    tier: str
    provider: str
    provider_ref: str
    url: str | None = None
    size_bytes: int = 0
    sync_status: str = "synced"
    id: int | None = None
    last_synced_at: datetime | None = None
    last_verified_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class FileVersion:
    """Represents a row from the storage_versions table."""

    id: int
    file_id: str
    version_number: int
    size_bytes: int
    checksum_sha256: str
    archive_ref: str
    change_description: str = ""
    created_by: int | None = None
    created_at: datetime | None = None
    is_current: bool = False


@dataclass
class SyncQueueItem:
    """Represents a row from the sync_queue table."""

    id: int
    file_id: str
    operation: str
    from_tier: str | None
    to_tier: str
    priority: int
    status: str
    attempts: int
    error_message: str | None = None
    queued_at: datetime | None = None
    locked_at: datetime | None = None
    last_attempt_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class CacheEntry:
    """Represents a row from the storage_cache table."""

    file_id: str
    cache_ref: str
    cache_size: int
    cached_at: datetime
    expires_at: datetime
    hit_count: int = 0
    miss_count: int = 0
    last_accessed_at: datetime | None = None
    id: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class KeyEntities:
    """Named entities found in a document."""

    people: list[str] = field(default_factory=list)
    organizations: list[str] = field(default_factory=list)
    places: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "people": list(self.people),
            "organizations": list(self.organizations),
            "places": list(self.places),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, object] | None) -> "KeyEntities":
        if not raw:
            return cls()
        return cls(
            people=[str(v) for v in raw.get("people") or []],  # type: ignore[union-attr]
            organizations=[str(v) for v in raw.get("organizations") or []],  # type: ignore[union-attr]
            places=[str(v) for v in raw.get("places") or []],  # type: ignore[union-attr]
        )


@dataclass
class DiscoveryRecord:
    """Represents a row from the document_discovery table.

    ``needs_review`` is derived from the score and review stamp rather than
    stored, so it can never disagree with ``confidence_score``.
    """

    file_id: str
    discovery_status: str = "pending"
    discovered_category: str | None = None
    discovered_subcategory: str | None = None
    confidence_score: float | None = None
    content_summary: str | None = None
    key_points: list[str] = field(default_factory=list)
    auto_tags: list[str] = field(default_factory=list)
    key_entities: KeyEntities = field(default_factory=KeyEntities)
    document_date: date | None = None
    language: str | None = None
    attempts: int = 0
    error_message: str | None = None
    review_decision: str | None = None
    reviewed_by: int | None = None
    submitted_at: datetime | None = None
    started_at: datetime | None = None
    processed_at: datetime | None = None
    reviewed_at: datetime | None = None

    @property
    def is_processed(self) -> bool:
        return self.discovery_status in ("needs_review", "reviewed")

    @property
    def awaiting_decision(self) -> bool:
        """Processed but neither accepted nor rejected yet."""
        return self.is_processed and self.reviewed_at is None

    def needs_review(self, high_threshold: float) -> bool:
        if not self.awaiting_decision:
            return False
        if self.discovery_status == "needs_review":
            return True
        return self.confidence_score is None or self.confidence_score < high_threshold
