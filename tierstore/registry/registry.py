"""Canonical metadata store for every file the storage layer knows about.

All writes to ``storage_files`` go through ``FileRegistry``. Deletes are
soft: the record disappears from search immediately and one ``delete``
queue item per tier holding a copy is written in the same transaction.
The row itself is hard-deleted by ``purge_deleted`` once the workers have
removed every copy.
"""

import hashlib
import re
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

import psycopg

from tierstore.database.connection import get_connection
from tierstore.database.models import FileLocation, FileRecord
from tierstore.database.pagination import Page, page_bounds
from tierstore.database.repositories.cache_repository import CacheRepository
from tierstore.database.repositories.discovery_repository import DiscoveryRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.database.repositories.version_repository import VersionRepository
from tierstore.logging.logger import Log
from tierstore.registry.constants import (
    CATEGORIES,
    DEFAULT_CATEGORY,
    DEFAULT_DOCUMENT_STATUS,
    DEFAULT_VISIBILITY,
    DOCUMENT_STATUSES,
    VISIBILITIES,
)
from tierstore.registry.exceptions import (
    FileAccessDeniedError,
    FileRecordNotFoundError,
    InvalidFileDataError,
    InvalidSearchError,
)
from tierstore.registry.models import FileMetadata, UploadOutcome
from tierstore.storage.exceptions import StorageError
from tierstore.storage.factory import TierRegistry
from tierstore.storage.local_adapter import guess_mime_type
from tierstore.sync.constants import (
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_NORMAL,
    SERVING_ORDER,
)
from tierstore.sync.queue import SyncQueue
from tierstore.text.normalizer import TextNormalizer

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_FILENAME = 255
_MAX_TAGS = 50


def safe_filename(filename: str) -> str:
    """Reduce a user filename to characters every backend accepts."""
    name = _UNSAFE_FILENAME_RE.sub("-", Path(filename).name).strip("-.")
    return name[:_MAX_FILENAME] or "file"


def version_ref(file_id: str, version_number: int, filename: str) -> str:
    """Local-tier key of one version's bytes."""
    return f"{file_id}/v{version_number}/{safe_filename(filename)}"


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FileRegistry:
    def __init__(
        self,
        *,
        file_repo: FileRepository,
        location_repo: LocationRepository,
        discovery_repo: DiscoveryRepository,
        cache_repo: CacheRepository,
        version_repo: VersionRepository,
        queue: SyncQueue,
        tiers: TierRegistry,
        normalizer: TextNormalizer | None = None,
    ) -> None:
        self._file_repo = file_repo
        self._location_repo = location_repo
        self._discovery_repo = discovery_repo
        self._cache_repo = cache_repo
        self._version_repo = version_repo
        self._queue = queue
        self._tiers = tiers
        self._normalizer = normalizer or TextNormalizer()

    def create(self, metadata: FileMetadata) -> str:
        """Register a file record without placing any bytes. Returns the new file id."""
        record = self._build_record(metadata)
        with get_connection() as conn:
            created = self._file_repo.insert(conn, record, self._search_text(record))
            conn.commit()
        Log.info(f"Registered file {created.file_id} ({created.filename})")
        return created.file_id

    def upload(
        self,
        source_path: Path,
        metadata: FileMetadata,
        sync_to_collab: bool = False,
    ) -> UploadOutcome:
        """Store a new file on the local tier and schedule its placement elsewhere.

        The record, its local location, the placement queue items and the
        discovery submission are written in one transaction. If that
        transaction fails the local copy is removed again.

        Raises:
            InvalidFileDataError: if the source is missing or metadata is invalid.
            StorageError: if the local tier cannot store the file.
        """
        if not source_path.is_file():
            raise InvalidFileDataError(f"Source file not found: {source_path}")
        measured = replace(
            metadata,
            size_bytes=source_path.stat().st_size,
            checksum_sha256=file_sha256(source_path),
            mime_type=metadata.mime_type or guess_mime_type(metadata.filename),
        )
        record = self._build_record(measured)

        local = self._tiers.get("local")
        file_ref = version_ref(record.file_id, 1, record.filename)
        stored = local.upload(source_path, file_ref, record.mime_type)

        try:
            with get_connection() as conn:
                with conn.transaction():
                    created = self._file_repo.insert(conn, record, self._search_text(record))
                    self._location_repo.upsert(
                        conn,
                        FileLocation(
                            file_id=created.file_id,
                            tier="local",
                            provider=local.get_provider_name(),
                            provider_ref=stored.file_ref,
                            url=stored.url,
                            size_bytes=stored.size,
                        ),
                    )
                    self._version_repo.insert_current(
                        conn,
                        created.file_id,
                        1,
                        created.size_bytes,
                        created.checksum_sha256,
                        stored.file_ref,
                        "Initial upload",
                        created.created_by,
                    )
                    item_ids = self._enqueue_placement(conn, created, sync_to_collab)
                    self._discovery_repo.submit(conn, created.file_id)
                    duplicates = self._file_repo.find_by_checksum(
                        conn, created.checksum_sha256, exclude_file_id=created.file_id
                    )
        except Exception:
            local.delete(stored.file_ref)
            raise

        duplicate_ids = [d.file_id for d in duplicates]
        if duplicate_ids:
            Log.warning(
                f"File {created.file_id} has the same content as {', '.join(duplicate_ids)}"
            )
        Log.info(
            f"Uploaded file {created.file_id} ({created.filename}, {created.size_bytes} bytes), "
            f"queued {len(item_ids)} placement items"
        )
        return UploadOutcome(
            record=created, queued_item_ids=item_ids, duplicate_file_ids=duplicate_ids
        )

    def get(self, file_id: str) -> FileRecord:
        with get_connection() as conn:
            record = self._file_repo.find_by_id(conn, _checked_id(file_id))
        if record is None:
            raise FileRecordNotFoundError(f"File {file_id} not found")
        return record

    def locations(self, file_id: str) -> list[FileLocation]:
        with get_connection() as conn:
            return self._location_repo.list_for_file(conn, _checked_id(file_id))

    def update(self, file_id: str, changes: dict[str, Any]) -> FileRecord:
        """Apply a partial metadata update.

        A status change writes a history row. A visibility change schedules
        the matching CDN placement or removal.
        """
        file_id = _checked_id(file_id)
        fields = self._validate_changes(changes)
        with get_connection() as conn:
            with conn.transaction():
                current = self._file_repo.find_by_id(conn, file_id, for_update=True)
                if current is None:
                    raise FileRecordNotFoundError(f"File {file_id} not found")
                updated = self._apply(conn, current, fields)
                new_status = fields.get("document_status", current.document_status)
                if new_status != current.document_status:
                    self._file_repo.insert_status_history(
                        conn, file_id, current.document_status, new_status, None, None
                    )
                if "visibility" in fields and fields["visibility"] != current.visibility:
                    self._enqueue_visibility_change(conn, updated)
        Log.info(f"Updated file {file_id}: {sorted(fields)}")
        return updated

    def apply_classification(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        category: str | None,
        subcategory: str | None,
        tags: list[str],
    ) -> FileRecord:
        """Copy accepted discovery suggestions onto a record inside the caller's transaction."""
        current = self._file_repo.find_by_id(conn, file_id, for_update=True)
        if current is None:
            raise FileRecordNotFoundError(f"File {file_id} not found")
        fields: dict[str, Any] = {"tags": _merge_tags(current.tags, tags)}
        if category is not None:
            fields["category"] = category if category in CATEGORIES else DEFAULT_CATEGORY
        if subcategory is not None:
            fields["subcategory"] = subcategory
        return self._apply(conn, current, fields)

    def change_status(
        self,
        file_id: str,
        new_status: str,
        changed_by: int | None = None,
        note: str | None = None,
    ) -> FileRecord:
        file_id = _checked_id(file_id)
        if new_status not in DOCUMENT_STATUSES:
            raise InvalidFileDataError(
                f"Unknown document status '{new_status}'. Choose from: {sorted(DOCUMENT_STATUSES)}"
            )
        with get_connection() as conn:
            with conn.transaction():
                current = self._file_repo.find_by_id(conn, file_id, for_update=True)
                if current is None:
                    raise FileRecordNotFoundError(f"File {file_id} not found")
                if current.document_status == new_status:
                    return current
                updated = self._apply(conn, current, {"document_status": new_status})
                self._file_repo.insert_status_history(
                    conn, file_id, current.document_status, new_status, changed_by, note
                )
        Log.info(f"File {file_id} status {current.document_status} -> {new_status}")
        return updated

    def status_history(self, file_id: str) -> list[dict[str, Any]]:
        with get_connection() as conn:
            return self._file_repo.status_history(conn, _checked_id(file_id))

    def delete(self, file_id: str) -> list[int]:
        """Soft-delete a record and queue removal of every physical copy.

        Returns the ids of the queued delete items, one per tier holding the file.
        """
        file_id = _checked_id(file_id)
        with get_connection() as conn:
            with conn.transaction():
                current = self._file_repo.find_by_id(conn, file_id, for_update=True)
                if current is None:
                    raise FileRecordNotFoundError(f"File {file_id} not found")
                locations = self._location_repo.list_for_file(conn, file_id)
                item_ids = [
                    self._queue.enqueue_in(
                        conn, file_id, "delete", None, location.tier, PRIORITY_NORMAL
                    )
                    for location in locations
                ]
                self._cache_repo.delete(conn, file_id)
                self._file_repo.soft_delete(conn, file_id)
        Log.info(f"Deleted file {file_id}, queued cleanup on {len(item_ids)} tiers")
        return item_ids

    def purge_deleted(self) -> list[str]:
        """Hard-delete cleaned-up records and drop their archived versions from the local tier."""
        with get_connection() as conn:
            with conn.transaction():
                archives = self._version_repo.archive_refs_of_deleted_files(conn)
                purged = self._file_repo.purge_deleted(conn)
        local = self._tiers.get("local")
        for file_id in purged:
            for archive_ref in archives.get(file_id, []):
                try:
                    local.delete(archive_ref)
                except StorageError as exc:
                    Log.warning(f"Could not remove archived version {archive_ref}: {exc}")
        if purged:
            Log.info(f"Purged {len(purged)} deleted file records")
        return purged

    def search(
        self,
        category: str | None = None,
        visibility: str | None = None,
        text: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page[FileRecord]:
        """List live records matching every given filter, newest first.

        Raises:
            InvalidSearchError: on an unknown filter value or bad pagination.
        """
        if category is not None and category not in CATEGORIES:
            raise InvalidSearchError(f"Unknown category '{category}'")
        if visibility is not None and visibility not in VISIBILITIES:
            raise InvalidSearchError(f"Unknown visibility '{visibility}'")
        try:
            limit, offset = page_bounds(page, per_page)
        except ValueError as exc:
            raise InvalidSearchError(str(exc)) from exc
        folded = self._normalizer.fold(text) if text else None
        with get_connection() as conn:
            items, total = self._file_repo.search(
                conn, category, visibility, folded, limit, offset
            )
        return Page(items=items, total=total, page=page, per_page=per_page)

    def verify_physical_copy(
        self, file_id: str, physical_location: str, verified_by: int | None = None
    ) -> FileRecord:
        if not physical_location.strip():
            raise InvalidFileDataError("Physical location must not be empty")
        with get_connection() as conn:
            record = self._file_repo.set_physical_verified(
                conn, _checked_id(file_id), physical_location.strip(), verified_by
            )
            conn.commit()
        if record is None:
            raise FileRecordNotFoundError(f"File {file_id} not found")
        Log.info(f"Physical copy of file {file_id} verified at {physical_location}")
        return record

    def find_duplicates(self, checksum: str) -> list[FileRecord]:
        with get_connection() as conn:
            return self._file_repo.find_by_checksum(conn, checksum.lower())

    def record_access(self, file_id: str) -> None:
        with get_connection() as conn:
            found = self._file_repo.record_access(conn, _checked_id(file_id))
            conn.commit()
        if not found:
            raise FileRecordNotFoundError(f"File {file_id} not found")

    def get_file_url(self, file_id: str, authenticated: bool = False) -> str:
        """Return a URL from the first tier in serving order that can produce one.

        Raises:
            FileAccessDeniedError: for a private file when ``authenticated`` is False.
            FileRecordNotFoundError: when no tier can serve the file.
        """
        record = self.get(file_id)
        if not record.is_public and not authenticated:
            raise FileAccessDeniedError(f"File {file_id} is private")
        by_tier = {
            loc.tier: loc for loc in self.locations(file_id) if loc.sync_status == "synced"
        }
        for tier in SERVING_ORDER:
            location = by_tier.get(tier)
            if location is None or not self._tiers.is_enabled(tier):
                continue
            try:
                url = self._tiers.get(tier).get_url(location.provider_ref)
            except StorageError as exc:
                Log.warning(f"Tier {tier} could not produce a URL for {file_id}: {exc}")
                continue
            if url:
                return url
        raise FileRecordNotFoundError(f"File {file_id} is not reachable by URL on any tier")

    def _enqueue_placement(
        self, conn: psycopg.Connection[Any], record: FileRecord, sync_to_collab: bool
    ) -> list[int]:
        item_ids = []
        if self._tiers.is_enabled("cloud"):
            item_ids.append(
                self._queue.enqueue_in(
                    conn, record.file_id, "upload", "local", "cloud", PRIORITY_NORMAL
                )
            )
        if record.is_public and self._tiers.is_enabled("cdn"):
            item_ids.append(
                self._queue.enqueue_in(
                    conn, record.file_id, "upload", "local", "cdn", PRIORITY_HIGH
                )
            )
        if sync_to_collab and self._tiers.is_enabled("collab"):
            item_ids.append(
                self._queue.enqueue_in(
                    conn, record.file_id, "upload", "local", "collab", PRIORITY_NORMAL
                )
            )
        return item_ids

    def _enqueue_visibility_change(
        self, conn: psycopg.Connection[Any], record: FileRecord
    ) -> None:
        if not self._tiers.is_enabled("cdn"):
            return
        if record.is_public:
            if self._location_repo.find(conn, record.file_id, "cdn") is None:
                self._queue.enqueue_in(
                    conn, record.file_id, "upload", "local", "cdn", PRIORITY_HIGH
                )
        else:
            # Queued even without a cdn location: a placement may still be in flight.
            self._queue.enqueue_in(conn, record.file_id, "delete", None, "cdn", PRIORITY_CRITICAL)

    def _apply(
        self, conn: psycopg.Connection[Any], current: FileRecord, fields: dict[str, Any]
    ) -> FileRecord:
        merged = replace(current, **fields)
        updated = self._file_repo.update_fields(
            conn, current.file_id, fields, search_text=self._search_text(merged)
        )
        if updated is None:
            raise FileRecordNotFoundError(f"File {current.file_id} not found")
        return updated

    def _search_text(self, record: FileRecord) -> str:
        return self._normalizer.build_search_text(
            record.filename,
            record.description,
            record.category,
            record.subcategory,
            record.document_author,
            " ".join(record.tags),
        )

    def _build_record(self, metadata: FileMetadata) -> FileRecord:
        filename = metadata.filename.strip()
        if not filename:
            raise InvalidFileDataError("Filename must not be empty")
        if len(filename) > _MAX_FILENAME:
            raise InvalidFileDataError(f"Filename longer than {_MAX_FILENAME} characters")
        fields = self._validate_changes(
            {
                "category": metadata.category or DEFAULT_CATEGORY,
                "visibility": metadata.visibility or DEFAULT_VISIBILITY,
                "document_status": metadata.document_status or DEFAULT_DOCUMENT_STATUS,
                "tags": metadata.tags,
            }
        )
        if metadata.size_bytes < 0:
            raise InvalidFileDataError("Size must not be negative")
        return FileRecord(
            file_id=str(uuid.uuid4()),
            filename=filename,
            mime_type=metadata.mime_type or guess_mime_type(filename),
            size_bytes=metadata.size_bytes,
            category=fields["category"],
            subcategory=metadata.subcategory,
            tags=fields["tags"],
            description=metadata.description,
            visibility=fields["visibility"],
            document_author=metadata.document_author,
            document_status=fields["document_status"],
            has_physical_copy=metadata.has_physical_copy,
            physical_location=metadata.physical_location,
            checksum_sha256=metadata.checksum_sha256,
            folder_path=metadata.folder_path.strip("/"),
            created_by=metadata.created_by,
        )

    @staticmethod
    def _validate_changes(changes: dict[str, Any]) -> dict[str, Any]:
        fields = dict(changes)
        allowed = {
            "filename",
            "category",
            "subcategory",
            "tags",
            "description",
            "visibility",
            "document_author",
            "document_status",
            "has_physical_copy",
            "physical_location",
            "folder_path",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise InvalidFileDataError(f"Fields cannot be changed: {sorted(unknown)}")
        if "category" in fields and fields["category"] not in CATEGORIES:
            raise InvalidFileDataError(
                f"Unknown category '{fields['category']}'. Choose from: {sorted(CATEGORIES)}"
            )
        if "visibility" in fields and fields["visibility"] not in VISIBILITIES:
            raise InvalidFileDataError(f"Unknown visibility '{fields['visibility']}'")
        if "document_status" in fields and fields["document_status"] not in DOCUMENT_STATUSES:
            raise InvalidFileDataError(
                f"Unknown document status '{fields['document_status']}'"
            )
        if "filename" in fields and not str(fields["filename"]).strip():
            raise InvalidFileDataError("Filename must not be empty")
        if "tags" in fields:
            tags = fields["tags"]
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise InvalidFileDataError("Tags must be a list of strings")
            fields["tags"] = _merge_tags([], tags)
            if len(fields["tags"]) > _MAX_TAGS:
                raise InvalidFileDataError(f"At most {_MAX_TAGS} tags are allowed")
        return fields


def _merge_tags(existing: list[str], new: list[str]) -> list[str]:
    """Union preserving order, compared case-insensitively."""
    seen: set[str] = set()
    merged: list[str] = []
    for tag in [*existing, *new]:
        cleaned = tag.strip()
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            merged.append(cleaned)
    return merged


def _checked_id(file_id: str) -> str:
    try:
        return str(uuid.UUID(str(file_id)))
    except ValueError as exc:
        raise FileRecordNotFoundError(f"File {file_id} not found") from exc
