from typing import Any

import psycopg
from psycopg.rows import dict_row

from tierstore.database.models import FileLocation

_COLUMNS = """
    id, file_id, tier, provider, provider_ref, url, size_bytes, sync_status,
    last_synced_at, last_verified_at, created_at
"""


def _to_location(row: dict[str, Any]) -> FileLocation:
    return FileLocation(
        id=row["id"],
        file_id=str(row["file_id"]),
        tier=row["tier"],
        provider=row["provider"],
        provider_ref=row["provider_ref"],
        url=row["url"],
        size_bytes=row["size_bytes"],
        sync_status=row["sync_status"],
        last_synced_at=row["last_synced_at"],
        last_verified_at=row["last_verified_at"],
        created_at=row["created_at"],
    )


class LocationRepository:
    """Database operations for the storage_locations table.

    Methods never commit; the calling service owns the transaction.
    """

    def upsert(self, conn: psycopg.Connection[Any], location: FileLocation) -> FileLocation:
        """Record that ``location.file_id`` is present on ``location.tier``."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO storage_locations
                    (file_id, tier, provider, provider_ref, url, size_bytes,
                     sync_status, last_synced_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (file_id, tier) DO UPDATE
                SET provider = EXCLUDED.provider,
                    provider_ref = EXCLUDED.provider_ref,
                    url = EXCLUDED.url,
                    size_bytes = EXCLUDED.size_bytes,
                    sync_status = EXCLUDED.sync_status,
                    last_synced_at = NOW()
                RETURNING {_COLUMNS}
                """,
                (
                    location.file_id,
                    location.tier,
                    location.provider,
                    location.provider_ref,
                    location.url,
                    location.size_bytes,
                    location.sync_status,
                ),
            )
            row = cur.fetchone()
        assert row is not None
        return _to_location(row)

    def find(
        self, conn: psycopg.Connection[Any], file_id: str, tier: str
    ) -> FileLocation | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM storage_locations WHERE file_id = %s AND tier = %s",
                (file_id, tier),
            )
            row = cur.fetchone()
        return _to_location(row) if row is not None else None

    def list_for_file(self, conn: psycopg.Connection[Any], file_id: str) -> list[FileLocation]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM storage_locations WHERE file_id = %s ORDER BY id",
                (file_id,),
            )
            rows = cur.fetchall()
        return [_to_location(row) for row in rows]

    def delete(self, conn: psycopg.Connection[Any], file_id: str, tier: str) -> bool:
        cur = conn.execute(
            "DELETE FROM storage_locations WHERE file_id = %s AND tier = %s",
            (file_id, tier),
        )
        return cur.rowcount > 0

    def mark_verified(
        self, conn: psycopg.Connection[Any], file_id: str, tier: str, sync_status: str
    ) -> bool:
        cur = conn.execute(
            """
            UPDATE storage_locations
            SET sync_status = %s, last_verified_at = NOW()
            WHERE file_id = %s AND tier = %s
            """,
            (sync_status, file_id, tier),
        )
        return cur.rowcount > 0
