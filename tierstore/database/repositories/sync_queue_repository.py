from typing import Any

import psycopg
from psycopg.rows import dict_row

from tierstore.database.models import SyncQueueItem

_COLUMNS = """
    id, file_id, operation, from_tier, to_tier, priority, status, attempts,
    error_message, queued_at, locked_at, last_attempt_at, completed_at
"""


def _to_item(row: dict[str, Any]) -> SyncQueueItem:
    return SyncQueueItem(
        id=row["id"],
        file_id=str(row["file_id"]),
        operation=row["operation"],
        from_tier=row["from_tier"],
        to_tier=row["to_tier"],
        priority=row["priority"],
        status=row["status"],
        attempts=row["attempts"],
        error_message=row["error_message"],
        queued_at=row["queued_at"],
        locked_at=row["locked_at"],
        last_attempt_at=row["last_attempt_at"],
        completed_at=row["completed_at"],
    )


class SyncQueueRepository:
    """Database operations for the sync_queue table.

    Methods never commit; the calling service owns the transaction.
    """

    def __init__(self, max_attempts: int) -> None:
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def insert(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        operation: str,
        from_tier: str | None,
        to_tier: str,
        priority: int,
    ) -> int:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sync_queue (file_id, operation, from_tier, to_tier, priority)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (file_id, operation, from_tier, to_tier, priority),
            )
            row = cur.fetchone()
        assert row is not None
        return int(row[0])

    def claim_next(self, conn: psycopg.Connection[Any]) -> SyncQueueItem | None:
        """Move the most urgent pending item to processing.

        Lowest priority value wins, then oldest ``queued_at``. Rows locked by
        another worker's claim are skipped rather than waited on, so two
        concurrent callers never receive the same item.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE sync_queue
                SET status = 'processing',
                    locked_at = clock_timestamp(),
                    last_attempt_at = clock_timestamp()
                WHERE id = (
                    SELECT id FROM sync_queue
                    WHERE status = 'pending'
                    ORDER BY priority, queued_at, id
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {_COLUMNS}
                """
            )
            row = cur.fetchone()
        return _to_item(row) if row is not None else None

    def complete(self, conn: psycopg.Connection[Any], item_id: int) -> SyncQueueItem | None:
        """Returns None when the item is not currently processing."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE sync_queue
                SET status = 'completed', completed_at = NOW(), locked_at = NULL,
                    error_message = NULL
                WHERE id = %s AND status = 'processing'
                RETURNING {_COLUMNS}
                """,
                (item_id,),
            )
            row = cur.fetchone()
        return _to_item(row) if row is not None else None

    def fail(
        self, conn: psycopg.Connection[Any], item_id: int, error_message: str
    ) -> SyncQueueItem | None:
        """Count a failed attempt; the item goes back to pending or, at the cap, to failed.

        Only processing items are affected, so failing an item that is
        already terminal is a no-op returning None.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE sync_queue
                SET attempts = attempts + 1,
                    status = CASE WHEN attempts + 1 >= %s THEN 'failed' ELSE 'pending' END,
                    error_message = %s,
                    locked_at = NULL
                WHERE id = %s AND status = 'processing'
                RETURNING {_COLUMNS}
                """,
                (self._max_attempts, error_message, item_id),
            )
            row = cur.fetchone()
        return _to_item(row) if row is not None else None

    def requeue_stale(self, conn: psycopg.Connection[Any], timeout_seconds: int) -> list[int]:
        """Return processing items claimed longer than ``timeout_seconds`` ago to pending.

        The abandoned claim is not counted as an attempt.
        """
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE sync_queue
                SET status = 'pending', locked_at = NULL
                WHERE status = 'processing'
                  AND locked_at < clock_timestamp() - make_interval(secs => %s)
                RETURNING id
                """,
                (timeout_seconds,),
            )
            rows = cur.fetchall()
        return [int(row[0]) for row in rows]

    def find_by_id(self, conn: psycopg.Connection[Any], item_id: int) -> SyncQueueItem | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM sync_queue WHERE id = %s", (item_id,))
            row = cur.fetchone()
        return _to_item(row) if row is not None else None

    def list_for_file(self, conn: psycopg.Connection[Any], file_id: str) -> list[SyncQueueItem]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM sync_queue WHERE file_id = %s ORDER BY id",
                (file_id,),
            )
            rows = cur.fetchall()
        return [_to_item(row) for row in rows]

    def list_by_status(
        self, conn: psycopg.Connection[Any], status: str, limit: int, offset: int
    ) -> tuple[list[SyncQueueItem], int]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM sync_queue WHERE status = %s", (status,)
            )
            count_row = cur.fetchone()
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM sync_queue
                WHERE status = %s
                ORDER BY priority, queued_at, id
                LIMIT %s OFFSET %s
                """,
                (status, limit, offset),
            )
            rows = cur.fetchall()
        total = count_row["total"] if count_row is not None else 0
        return [_to_item(row) for row in rows], total

    def count_by_status(self, conn: psycopg.Connection[Any]) -> dict[str, int]:
        with conn.cursor() as cur:
            cur.execute("SELECT status, COUNT(*) FROM sync_queue GROUP BY status")
            rows = cur.fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def delete_completed(self, conn: psycopg.Connection[Any], days_old: int) -> int:
        cur = conn.execute(
            """
            DELETE FROM sync_queue
            WHERE status = 'completed'
              AND completed_at < NOW() - make_interval(days => %s)
            """,
            (days_old,),
        )
        return cur.rowcount
