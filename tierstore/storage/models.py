from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UploadResult:
    """Where an object landed after an upload."""

    file_ref: str
    url: str | None
    size: int
    mime_type: str


@dataclass(frozen=True)
class ObjectMetadata:
    size: int
    mime_type: str
    modified: datetime | None


@dataclass(frozen=True)
class StorageUsage:
    """Space used on a tier. ``total`` is None when the backend reports no quota."""

    used: int
    total: int | None
    count: int
