from tierstore.database.connection import get_connection
from tierstore.database.models import FileLocation, FileRecord, SyncQueueItem
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.database.repositories.sync_queue_repository import SyncQueueRepository
from tierstore.logging.logger import Log
from tierstore.storage.exceptions import StorageError, StorageObjectNotFoundError
from tierstore.storage.factory import TierRegistry
from tierstore.storage.local_adapter import remove_temp_file
from tierstore.sync.constants import PRIORITY_CRITICAL, PRIORITY_NORMAL
from tierstore.sync.exceptions import InvalidQueueOperationError


class TierTransferExecutor:
    """Performs the physical work behind one sync queue item.

    Returns a short description of what was done. Storage failures are
    raised as ``StorageError`` so the caller can count the attempt.
    """

    def __init__(
        self,
        tiers: TierRegistry,
        location_repo: LocationRepository,
        file_repo: FileRepository,
        queue_repo: SyncQueueRepository,
    ) -> None:
        self._tiers = tiers
        self._location_repo = location_repo
        self._file_repo = file_repo
        self._queue_repo = queue_repo

    def execute(self, item: SyncQueueItem) -> str:
        if item.operation in ("upload", "sync"):
            return self._copy(item)
        if item.operation == "delete":
            return self._delete(item)
        if item.operation == "verify":
            return self._verify(item)
        raise InvalidQueueOperationError(f"Unknown operation '{item.operation}'")

    def _copy(self, item: SyncQueueItem) -> str:
        assert item.from_tier is not None
        with get_connection() as conn:
            record = self._file_repo.find_by_id(conn, item.file_id, include_deleted=True)
            source = self._location_repo.find(conn, item.file_id, item.from_tier)
        if record is None or record.deleted_at is not None:
            return f"file {item.file_id} was deleted, nothing to copy"
        if item.to_tier == "cdn" and not record.is_public:
            return "file is private, not placed on cdn"
        if source is None:
            raise StorageObjectNotFoundError(
                f"File {item.file_id} has no copy on {item.from_tier}"
            )

        temp_path = self._tiers.get(item.from_tier).download(source.provider_ref)
        try:
            destination = self._tiers.get(item.to_tier)
            result = destination.upload(temp_path, source.provider_ref, record.mime_type)
        finally:
            remove_temp_file(temp_path)

        revoke: int | None = None
        resync = False
        previous: FileLocation | None = None
        with get_connection() as conn:
            with conn.transaction():
                # The record may have changed while the bytes were in flight.
                current = self._file_repo.find_by_id(
                    conn, item.file_id, include_deleted=True, for_update=True
                )
                if current is not None:
                    previous = self._location_repo.find(conn, item.file_id, item.to_tier)
                    self._location_repo.upsert(
                        conn,
                        FileLocation(
                            file_id=item.file_id,
                            tier=item.to_tier,
                            provider=destination.get_provider_name(),
                            provider_ref=result.file_ref,
                            url=result.url,
                            size_bytes=result.size,
                        ),
                    )
                    revoke = self._revocation_priority(item.to_tier, current)
                    if revoke is not None:
                        self._queue_repo.insert(
                            conn, item.file_id, "delete", None, item.to_tier, revoke
                        )
                    else:
                        latest = self._location_repo.find(conn, item.file_id, item.from_tier)
                        resync = (
                            latest is not None and latest.provider_ref != source.provider_ref
                        )
                        if resync:
                            self._queue_repo.insert(
                                conn,
                                item.file_id,
                                "sync",
                                item.from_tier,
                                item.to_tier,
                                item.priority,
                            )
        if current is None:
            destination.delete(result.file_ref)
            return f"file {item.file_id} was purged, removed copy from {item.to_tier}"
        if previous is not None and previous.provider_ref != result.file_ref:
            self._remove_superseded(item.to_tier, previous.provider_ref)
        if revoke is not None:
            Log.warning(
                f"File {item.file_id} changed during copy to {item.to_tier}, "
                "queued removal of the new copy"
            )
            return f"copied {result.size} bytes to {item.to_tier}, removal queued"
        if resync:
            Log.info(
                f"File {item.file_id} got a new version during copy to {item.to_tier}, "
                "queued another sync"
            )
            return f"copied {result.size} bytes to {item.to_tier}, newer version queued"
        Log.info(
            f"Copied file {item.file_id} from {item.from_tier} to {item.to_tier} "
            f"({result.size} bytes)"
        )
        return f"copied {result.size} bytes to {item.to_tier}"

    def _remove_superseded(self, tier: str, file_ref: str) -> None:
        try:
            self._tiers.get(tier).delete(file_ref)
        except StorageError as exc:
            Log.warning(f"Could not remove superseded object {file_ref} from {tier}: {exc}")

    @staticmethod
    def _revocation_priority(tier: str, record: FileRecord) -> int | None:
        """Priority of the delete owed for a copy that should no longer exist, if any."""
        if record.deleted_at is not None:
            return PRIORITY_NORMAL
        if tier == "cdn" and not record.is_public:
            return PRIORITY_CRITICAL
        return None

    def _delete(self, item: SyncQueueItem) -> str:
        with get_connection() as conn:
            location = self._location_repo.find(conn, item.file_id, item.to_tier)
        if location is None:
            return f"no copy on {item.to_tier}"

        removed = self._tiers.get(item.to_tier).delete(location.provider_ref)
        with get_connection() as conn:
            self._location_repo.delete(conn, item.file_id, item.to_tier)
            conn.commit()
        Log.info(f"Deleted file {item.file_id} from {item.to_tier}")
        return f"deleted from {item.to_tier}" if removed else f"already absent on {item.to_tier}"

    def _verify(self, item: SyncQueueItem) -> str:
        assert item.from_tier is not None
        with get_connection() as conn:
            source = self._location_repo.find(conn, item.file_id, item.from_tier)
            target = self._location_repo.find(conn, item.file_id, item.to_tier)
        if source is None or target is None:
            missing = item.from_tier if source is None else item.to_tier
            raise StorageObjectNotFoundError(f"File {item.file_id} has no copy on {missing}")

        source_size = self._tiers.get(item.from_tier).get_metadata(source.provider_ref).size
        target_size = self._tiers.get(item.to_tier).get_metadata(target.provider_ref).size
        matches = source_size == target_size
        with get_connection() as conn:
            self._location_repo.mark_verified(
                conn, item.file_id, item.to_tier, "synced" if matches else "mismatch"
            )
            conn.commit()
        if not matches:
            raise StorageError(
                f"Size mismatch for file {item.file_id}: {item.from_tier}={source_size} "
                f"{item.to_tier}={target_size}"
            )
        return f"verified {target_size} bytes on {item.to_tier}"
