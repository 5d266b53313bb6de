from typing import Any

import psycopg
from psycopg.rows import dict_row

from tierstore.database.models import FileVersion

_COLUMNS = """
    id, file_id, version_number, size_bytes, checksum_sha256, archive_ref,
    change_description, created_by, created_at, is_current
"""


def _to_version(row: dict[str, Any]) -> FileVersion:
    return FileVersion(
        id=row["id"],
        file_id=str(row["file_id"]),
        version_number=row["version_number"],
        size_bytes=row["size_bytes"],
        checksum_sha256=row["checksum_sha256"],
        archive_ref=row["archive_ref"],
        change_description=row["change_description"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        is_current=row["is_current"],
    )


class VersionRepository:
    """Database operations for the storage_versions table.

    Methods never commit; the calling service owns the transaction and is
    expected to hold the ``storage_files`` row lock while adding versions.
    """

    def insert_current(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        version_number: int,
        size_bytes: int,
        checksum_sha256: str,
        archive_ref: str,
        change_description: str,
        created_by: int | None,
    ) -> FileVersion:
        """Add a version and make it the only current one for the file."""
        conn.execute(
            "UPDATE storage_versions SET is_current = FALSE WHERE file_id = %s AND is_current",
            (file_id,),
        )
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO storage_versions
                    (file_id, version_number, size_bytes, checksum_sha256, archive_ref,
                     change_description, created_by, is_current)
                VALUES (%s, %s, %s, %s, %s, %s, %s, TRUE)
                RETURNING {_COLUMNS}
                """,
                (
                    file_id,
                    version_number,
                    size_bytes,
                    checksum_sha256,
                    archive_ref,
                    change_description,
                    created_by,
                ),
            )
            row = cur.fetchone()
        assert row is not None
        return _to_version(row)

    def latest_number(self, conn: psycopg.Connection[Any], file_id: str) -> int:
        """Highest version number ever recorded for the file, 0 if none."""
        with conn.cursor() as cur:
            cur.execute(
                "SELECT COALESCE(MAX(version_number), 0) FROM storage_versions WHERE file_id = %s",
                (file_id,),
            )
            row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def find(self, conn: psycopg.Connection[Any], version_id: int) -> FileVersion | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM storage_versions WHERE id = %s", (version_id,))
            row = cur.fetchone()
        return _to_version(row) if row is not None else None

    def find_by_number(
        self, conn: psycopg.Connection[Any], file_id: str, version_number: int
    ) -> FileVersion | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM storage_versions
                WHERE file_id = %s AND version_number = %s
                """,
                (file_id, version_number),
            )
            row = cur.fetchone()
        return _to_version(row) if row is not None else None

    def list_for_file(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[FileVersion]:
        order = "DESC" if newest_first else "ASC"
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM storage_versions
                WHERE file_id = %s
                ORDER BY version_number {order}
                LIMIT %s
                """,
                (file_id, limit),
            )
            rows = cur.fetchall()
        return [_to_version(row) for row in rows]

    def delete_many(
        self, conn: psycopg.Connection[Any], file_id: str, version_ids: list[int]
    ) -> list[FileVersion]:
        """Delete non-current versions of one file. The current version is never removed."""
        if not version_ids:
            return []
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                DELETE FROM storage_versions
                WHERE file_id = %s AND id = ANY(%s) AND NOT is_current
                RETURNING {_COLUMNS}
                """,
                (file_id, version_ids),
            )
            rows = cur.fetchall()
        return [_to_version(row) for row in rows]

    def archive_refs_of_deleted_files(
        self, conn: psycopg.Connection[Any]
    ) -> dict[str, list[str]]:
        """Archive refs of every soft-deleted file, keyed by file id."""
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT v.file_id, v.archive_ref
                FROM storage_versions v
                JOIN storage_files f ON f.file_id = v.file_id
                WHERE f.deleted_at IS NOT NULL
                ORDER BY v.file_id, v.version_number
                """
            )
            rows = cur.fetchall()
        refs: dict[str, list[str]] = {}
        for file_id, archive_ref in rows:
            refs.setdefault(str(file_id), []).append(archive_ref)
        return refs

    def summary(self, conn: psycopg.Connection[Any], file_id: str) -> dict[str, Any]:
        """Counts and bounds over the surviving versions of one file."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) AS total_versions,
                    COALESCE(MAX(version_number) FILTER (WHERE is_current), 0)
                        AS current_version,
                    MIN(created_at) AS first_uploaded,
                    MAX(created_at) AS last_updated,
                    COALESCE(
                        (ARRAY_AGG(size_bytes ORDER BY version_number DESC))[1]
                        - (ARRAY_AGG(size_bytes ORDER BY version_number))[1],
                        0
                    ) AS total_size_change,
                    COUNT(DISTINCT created_by) AS unique_uploaders
                FROM storage_versions
                WHERE file_id = %s
                """,
                (file_id,),
            )
            row = cur.fetchone()
        assert row is not None
        return dict(row)
