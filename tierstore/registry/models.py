from dataclasses import dataclass, field

from tierstore.database.models import FileRecord, FileVersion


@dataclass
class FileMetadata:
    """Caller-supplied attributes for a new file. Unset fields take registry defaults."""

    filename: str
    mime_type: str | None = None
    category: str | None = None
    subcategory: str | None = None
    tags: list[str] = field(default_factory=list)
    description: str = ""
    visibility: str | None = None
    document_author: str | None = None
    document_status: str | None = None
    has_physical_copy: bool = False
    physical_location: str | None = None
    folder_path: str = ""
    created_by: int | None = None
    size_bytes: int = 0
    checksum_sha256: str = ""


@dataclass
class UploadOutcome:
    record: FileRecord
    queued_item_ids: list[int] = field(default_factory=list)
    duplicate_file_ids: list[str] = field(default_factory=list)

    @property
    def file_id(self) -> str:
        return self.record.file_id


@dataclass(frozen=True)
class VersionComparison:
    first: FileVersion
    second: FileVersion
    same_content: bool
    size_difference: int
    seconds_between: float
