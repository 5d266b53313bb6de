"""Content versions of registered files.

Every version keeps its bytes on the local tier under
``<file_id>/v<n>/<filename>``; the newest one is also what the local
location points at. Other tiers only hold the current version: adding a
version queues a ``sync`` to every tier that has a copy, and the executor
drops the superseded object once the new one is recorded.
"""

from pathlib import Path
from typing import Any

import psycopg

from tierstore.database.connection import get_connection
from tierstore.database.models import FileLocation, FileRecord, FileVersion
from tierstore.database.repositories.cache_repository import CacheRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.database.repositories.version_repository import VersionRepository
from tierstore.logging.logger import Log
from tierstore.registry.exceptions import (
    FileRecordNotFoundError,
    InvalidFileDataError,
    VersionNotFoundError,
)
from tierstore.registry.models import VersionComparison
from tierstore.registry.registry import _checked_id, file_sha256, version_ref
from tierstore.storage.exceptions import StorageError
from tierstore.storage.factory import TierRegistry
from tierstore.storage.local_adapter import remove_temp_file
from tierstore.storage.models import UploadResult
from tierstore.sync.constants import PRIORITY_HIGH, PRIORITY_NORMAL
from tierstore.sync.queue import SyncQueue

MILESTONE_VERSIONS = frozenset({1, 5, 10, 50, 100, 500, 1000})

# Local already holds the new bytes and the cache entry is dropped instead.
_UNSYNCED_TIERS = frozenset({"local", "cache"})


def is_milestone(version_number: int) -> bool:
    return version_number in MILESTONE_VERSIONS


class VersionService:
    def __init__(
        self,
        *,
        file_repo: FileRepository,
        version_repo: VersionRepository,
        location_repo: LocationRepository,
        cache_repo: CacheRepository,
        queue: SyncQueue,
        tiers: TierRegistry,
    ) -> None:
        self._file_repo = file_repo
        self._version_repo = version_repo
        self._location_repo = location_repo
        self._cache_repo = cache_repo
        self._queue = queue
        self._tiers = tiers

    def create_version(
        self,
        file_id: str,
        source_path: Path,
        change_description: str = "",
        created_by: int | None = None,
    ) -> FileVersion:
        """Make the contents of ``source_path`` the current version of ``file_id``.

        The new bytes land on the local tier while the record is locked, so
        concurrent callers get consecutive version numbers. Every other
        tier holding a copy gets a ``sync`` item and the cache entry is
        dropped. Older versions stay on the local tier until pruned.

        Raises:
            FileRecordNotFoundError: if the file does not exist or was deleted.
            InvalidFileDataError: if the source is missing.
            StorageError: if the local tier cannot store the bytes.
        """
        file_id = _checked_id(file_id)
        if not source_path.is_file():
            raise InvalidFileDataError(f"Source file not found: {source_path}")
        checksum = file_sha256(source_path)

        local = self._tiers.get("local")
        stored: UploadResult | None = None
        try:
            with get_connection() as conn:
                with conn.transaction():
                    record = self._file_repo.find_by_id(conn, file_id, for_update=True)
                    if record is None:
                        raise FileRecordNotFoundError(f"File {file_id} not found")
                    number = self._version_repo.latest_number(conn, file_id) + 1
                    stored = local.upload(
                        source_path,
                        version_ref(file_id, number, record.filename),
                        record.mime_type,
                    )
                    version = self._activate(
                        conn, record, number, stored, checksum, change_description, created_by
                    )
                    cached = self._cache_repo.delete(conn, file_id)
                    self._location_repo.delete(conn, file_id, "cache")
        except Exception:
            if stored is not None:
                local.delete(stored.file_ref)
            raise

        if cached is not None:
            self._remove_cached(cached.cache_ref)
        Log.info(
            f"File {file_id} is now at version {version.version_number} "
            f"({version.size_bytes} bytes)"
        )
        return version

    def list_versions(
        self, file_id: str, limit: int | None = None, newest_first: bool = True
    ) -> list[FileVersion]:
        with get_connection() as conn:
            return self._version_repo.list_for_file(
                conn, _checked_id(file_id), limit, newest_first
            )

    def get_version(self, version_id: int) -> FileVersion:
        with get_connection() as conn:
            version = self._version_repo.find(conn, version_id)
        if version is None:
            raise VersionNotFoundError(f"Version {version_id} not found")
        return version

    def revert_to_version(
        self,
        file_id: str,
        version_number: int,
        reason: str = "",
        reverted_by: int | None = None,
    ) -> FileVersion:
        """Restore an older version by recording its bytes as a new version.

        History is never rewritten: reverting from v5 to v2 produces v6
        with the contents of v2.
        """
        file_id = _checked_id(file_id)
        with get_connection() as conn:
            target = self._version_repo.find_by_number(conn, file_id, version_number)
        if target is None:
            raise VersionNotFoundError(f"File {file_id} has no version {version_number}")

        description = f"Reverted to version {version_number}"
        if reason:
            description += f": {reason}"
        temp_path = self._tiers.get("local").download(target.archive_ref)
        try:
            return self.create_version(file_id, temp_path, description, reverted_by)
        finally:
            remove_temp_file(temp_path)

    def compare_versions(self, first_id: int, second_id: int) -> VersionComparison:
        first = self.get_version(first_id)
        second = self.get_version(second_id)
        seconds = 0.0
        if first.created_at is not None and second.created_at is not None:
            seconds = (second.created_at - first.created_at).total_seconds()
        return VersionComparison(
            first=first,
            second=second,
            same_content=first.checksum_sha256 == second.checksum_sha256,
            size_difference=second.size_bytes - first.size_bytes,
            seconds_between=seconds,
        )

    def history_summary(self, file_id: str) -> dict[str, Any]:
        with get_connection() as conn:
            return self._version_repo.summary(conn, _checked_id(file_id))

    def prune_old_versions(
        self, file_id: str, keep_versions: int = 10, keep_milestones: bool = True
    ) -> int:
        """Drop old versions beyond the newest ``keep_versions``. Returns how many went.

        The current version never counts against ``keep_versions`` and is
        never removed. Milestones (1, 5, 10, 50, ...) survive unless
        ``keep_milestones`` is False.
        """
        if keep_versions < 0:
            raise InvalidFileDataError("keep_versions must not be negative")
        file_id = _checked_id(file_id)
        with get_connection() as conn:
            with conn.transaction():
                if self._file_repo.find_by_id(conn, file_id, for_update=True) is None:
                    raise FileRecordNotFoundError(f"File {file_id} not found")
                versions = self._version_repo.list_for_file(conn, file_id)
                doomed = select_prunable(versions, keep_versions, keep_milestones)
                removed = self._version_repo.delete_many(
                    conn, file_id, [v.id for v in doomed]
                )

        local = self._tiers.get("local")
        for version in removed:
            try:
                local.delete(version.archive_ref)
            except StorageError as exc:
                Log.warning(f"Could not remove archived version {version.archive_ref}: {exc}")
        if removed:
            Log.info(f"Pruned {len(removed)} old versions of file {file_id}")
        return len(removed)

    def _activate(
        self,
        conn: psycopg.Connection[Any],
        record: FileRecord,
        number: int,
        stored: UploadResult,
        checksum: str,
        change_description: str,
        created_by: int | None,
    ) -> FileVersion:
        version = self._version_repo.insert_current(
            conn,
            record.file_id,
            number,
            stored.size,
            checksum,
            stored.file_ref,
            change_description,
            created_by,
        )
        self._file_repo.update_content(conn, record.file_id, stored.size, checksum, number)
        local = self._tiers.get("local")
        self._location_repo.upsert(
            conn,
            FileLocation(
                file_id=record.file_id,
                tier="local",
                provider=local.get_provider_name(),
                provider_ref=stored.file_ref,
                url=stored.url,
                size_bytes=stored.size,
            ),
        )
        for location in self._location_repo.list_for_file(conn, record.file_id):
            if location.tier in _UNSYNCED_TIERS:
                continue
            priority = PRIORITY_HIGH if location.tier == "cdn" else PRIORITY_NORMAL
            self._queue.enqueue_in(
                conn, record.file_id, "sync", "local", location.tier, priority
            )
        return version

    def _remove_cached(self, cache_ref: str) -> None:
        try:
            self._tiers.get("cache").delete(cache_ref)
        except StorageError as exc:
            Log.warning(f"Could not remove cached object {cache_ref}: {exc}")


def select_prunable(
    versions: list[FileVersion], keep_versions: int, keep_milestones: bool
) -> list[FileVersion]:
    """Versions to drop, given every version of one file newest first."""
    doomed = []
    kept = 0
    for version in versions:
        if version.is_current:
            continue
        if keep_milestones and is_milestone(version.version_number):
            continue
        if kept < keep_versions:
            kept += 1
            continue
        doomed.append(version)
    return doomed
