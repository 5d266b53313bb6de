from typing import Any

import psycopg

from tierstore.database.connection import get_connection
from tierstore.database.models import SyncQueueItem
from tierstore.database.pagination import Page, page_bounds
from tierstore.database.repositories.sync_queue_repository import SyncQueueRepository
from tierstore.logging.logger import Log
from tierstore.sync.constants import (
    OPERATIONS,
    PRIORITY_NORMAL,
    QUEUE_STATUSES,
    TIERS,
    priority_label,
)
from tierstore.sync.exceptions import InvalidQueueOperationError, QueueItemNotFoundError


def validate_item(
    operation: str, from_tier: str | None, to_tier: str, priority: int
) -> None:
    """Raises InvalidQueueOperationError when the item could never be executed."""
    if operation not in OPERATIONS:
        raise InvalidQueueOperationError(
            f"Unknown operation '{operation}'. Choose from: {sorted(OPERATIONS)}"
        )
    if to_tier not in TIERS:
        raise InvalidQueueOperationError(f"Unknown destination tier '{to_tier}'")
    if from_tier is not None and from_tier not in TIERS:
        raise InvalidQueueOperationError(f"Unknown source tier '{from_tier}'")
    if operation != "delete" and from_tier is None:
        raise InvalidQueueOperationError(f"Operation '{operation}' needs a source tier")
    if from_tier is not None and from_tier == to_tier:
        raise InvalidQueueOperationError("Source and destination tier must differ")
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
        raise InvalidQueueOperationError(f"Priority must be a positive integer, got {priority!r}")


class SyncQueue:
    """Durable queue of tier-to-tier operations.

    Items are claimed most urgent first (lowest priority value, then oldest).
    A failed attempt sends the item back to pending until the attempt cap
    is reached, after which it stays ``failed`` until an operator retries it.
    """

    def __init__(self, repo: SyncQueueRepository) -> None:
        self._repo = repo

    def enqueue(
        self,
        file_id: str,
        operation: str,
        from_tier: str | None,
        to_tier: str,
        priority: int = PRIORITY_NORMAL,
    ) -> int:
        with get_connection() as conn:
            item_id = self.enqueue_in(conn, file_id, operation, from_tier, to_tier, priority)
            conn.commit()
        return item_id

    def enqueue_in(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        operation: str,
        from_tier: str | None,
        to_tier: str,
        priority: int = PRIORITY_NORMAL,
    ) -> int:
        """Insert an item inside the caller's transaction. Does not commit."""
        validate_item(operation, from_tier, to_tier, priority)
        item_id = self._repo.insert(conn, file_id, operation, from_tier, to_tier, priority)
        Log.info(
            f"Queued {operation} {from_tier or '-'}->{to_tier} for file {file_id} "
            f"as item {item_id} ({priority_label(priority)} priority)"
        )
        return item_id

    def dequeue_next(self) -> SyncQueueItem | None:
        with get_connection() as conn:
            item = self._repo.claim_next(conn)
            conn.commit()
        if item is not None:
            Log.info(
                f"Claimed sync item {item.id}: {item.operation} "
                f"{item.from_tier or '-'}->{item.to_tier} for file {item.file_id}"
            )
        return item

    def complete(self, item_id: int) -> SyncQueueItem:
        with get_connection() as conn:
            item = self._repo.complete(conn, item_id)
            if item is None:
                current = self._repo.find_by_id(conn, item_id)
                conn.rollback()
                if current is None:
                    raise QueueItemNotFoundError(f"Sync item {item_id} not found")
                raise InvalidQueueOperationError(
                    f"Sync item {item_id} is {current.status}, not processing"
                )
            conn.commit()
        Log.info(f"Sync item {item_id} completed")
        return item

    def fail(self, item_id: int, error_message: str) -> SyncQueueItem:
        """Record a failed attempt. Calling it on an item that is not processing changes nothing."""
        with get_connection() as conn:
            item = self._repo.fail(conn, item_id, error_message)
            if item is None:
                current = self._repo.find_by_id(conn, item_id)
                conn.commit()
                if current is None:
                    raise QueueItemNotFoundError(f"Sync item {item_id} not found")
                Log.debug(f"Ignoring failure report for sync item {item_id} ({current.status})")
                return current
            conn.commit()

        if item.status == "failed":
            Log.error(
                f"Sync item {item_id} failed permanently after {item.attempts} attempts: "
                f"{error_message}"
            )
        else:
            Log.warning(
                f"Sync item {item_id} attempt {item.attempts}/{self._repo.max_attempts} "
                f"failed, will retry: {error_message}"
            )
        return item

    def requeue_stale(self, timeout_seconds: int) -> list[int]:
        with get_connection() as conn:
            item_ids = self._repo.requeue_stale(conn, timeout_seconds)
            conn.commit()
        for item_id in item_ids:
            Log.warning(
                f"Sync item {item_id} was processing for over {timeout_seconds}s, "
                f"returned to pending"
            )
        return item_ids

    def retry(self, item_id: int) -> int:
        """Re-enqueue a failed item as a fresh pending item. The failed row stays for audit."""
        with get_connection() as conn:
            item = self._repo.find_by_id(conn, item_id)
            if item is None:
                conn.rollback()
                raise QueueItemNotFoundError(f"Sync item {item_id} not found")
            if item.status != "failed":
                conn.rollback()
                raise InvalidQueueOperationError(
                    f"Only failed items can be retried; item {item_id} is {item.status}"
                )
            new_id = self._repo.insert(
                conn, item.file_id, item.operation, item.from_tier, item.to_tier, item.priority
            )
            conn.commit()
        Log.info(f"Sync item {item_id} re-enqueued as item {new_id}")
        return new_id

    def get(self, item_id: int) -> SyncQueueItem:
        with get_connection() as conn:
            item = self._repo.find_by_id(conn, item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Sync item {item_id} not found")
        return item

    def list_for_file(self, file_id: str) -> list[SyncQueueItem]:
        with get_connection() as conn:
            return self._repo.list_for_file(conn, file_id)

    def list_by_status(
        self, status: str, page: int = 1, per_page: int = 20
    ) -> Page[SyncQueueItem]:
        if status not in QUEUE_STATUSES:
            raise InvalidQueueOperationError(
                f"Unknown status '{status}'. Choose from: {list(QUEUE_STATUSES)}"
            )
        try:
            limit, offset = page_bounds(page, per_page)
        except ValueError as exc:
            raise InvalidQueueOperationError(str(exc)) from exc
        with get_connection() as conn:
            items, total = self._repo.list_by_status(conn, status, limit, offset)
        return Page(items=items, total=total, page=page, per_page=per_page)

    def stats(self) -> dict[str, int]:
        with get_connection() as conn:
            counts = self._repo.count_by_status(conn)
        result = {status: counts.get(status, 0) for status in QUEUE_STATUSES}
        result["total"] = sum(result.values())
        return result

    def clean(self, days_old: int) -> int:
        """Delete completed items older than ``days_old`` days. Failed items are kept."""
        with get_connection() as conn:
            removed = self._repo.delete_completed(conn, days_old)
            conn.commit()
        Log.info(f"Removed {removed} completed sync items older than {days_old} days")
        return removed
