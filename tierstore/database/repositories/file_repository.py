from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from tierstore.database.models import FileRecord

_COLUMNS = """
    file_id, filename, mime_type, size_bytes, category, subcategory, tags,
    description, visibility, document_author, document_status,
    has_physical_copy, physical_location, physical_verified_at,
    physical_verified_by, checksum_sha256, folder_path, current_version,
    access_count, last_accessed_at, created_by, created_at, updated_at, deleted_at
"""

UPDATABLE_COLUMNS = frozenset(
    {
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
)


def _to_record(row: dict[str, Any]) -> FileRecord:
    return FileRecord(
        file_id=str(row["file_id"]),
        filename=row["filename"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        category=row["category"],
        subcategory=row["subcategory"],
        tags=list(row["tags"] or []),
        description=row["description"],
        visibility=row["visibility"],
        document_author=row["document_author"],
        document_status=row["document_status"],
        has_physical_copy=row["has_physical_copy"],
        physical_location=row["physical_location"],
        physical_verified_at=row["physical_verified_at"],
        physical_verified_by=row["physical_verified_by"],
        checksum_sha256=row["checksum_sha256"],
        folder_path=row["folder_path"],
        current_version=row["current_version"],
        access_count=row["access_count"],
        last_accessed_at=row["last_accessed_at"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class FileRepository:
    """Database operations for the storage_files and storage_status_history tables.

    Methods never commit; the calling service owns the transaction.
    Soft-deleted rows are invisible unless ``include_deleted`` is passed.
    """

    def insert(
        self, conn: psycopg.Connection[Any], record: FileRecord, search_text: str
    ) -> FileRecord:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO storage_files
                    (file_id, filename, mime_type, size_bytes, checksum_sha256,
                     folder_path, category, subcategory, tags, description,
                     visibility, document_author, document_status,
                     has_physical_copy, physical_location, search_text, created_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (
                    record.file_id,
                    record.filename,
                    record.mime_type,
                    record.size_bytes,
                    record.checksum_sha256,
                    record.folder_path,
                    record.category,
                    record.subcategory,
                    record.tags,
                    record.description,
                    record.visibility,
                    record.document_author,
                    record.document_status,
                    record.has_physical_copy,
                    record.physical_location,
                    search_text,
                    record.created_by,
                ),
            )
            row = cur.fetchone()
        assert row is not None
        return _to_record(row)

    def find_by_id(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> FileRecord | None:
        query = f"SELECT {_COLUMNS} FROM storage_files WHERE file_id = %s"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        if for_update:
            query += " FOR UPDATE"
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, (file_id,))
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def update_fields(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        fields: dict[str, Any],
        search_text: str | None = None,
    ) -> FileRecord | None:
        """Apply a partial update. Unknown column names raise ValueError."""
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")
        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder())
            for name in fields
        ]
        params: list[Any] = list(fields.values())
        if search_text is not None:
            assignments.append(sql.SQL("search_text = {}").format(sql.Placeholder()))
            params.append(search_text)
        assignments.append(sql.SQL("updated_at = NOW()"))
        query = sql.SQL(
            "UPDATE storage_files SET {} WHERE file_id = {} AND deleted_at IS NULL "
            "RETURNING " + _COLUMNS
        ).format(sql.SQL(", ").join(assignments), sql.Placeholder())
        params.append(file_id)
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def update_content(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        size_bytes: int,
        checksum_sha256: str,
        current_version: int,
    ) -> FileRecord | None:
        """Point a live record at new content after a version change."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE storage_files
                SET size_bytes = %s, checksum_sha256 = %s, current_version = %s,
                    updated_at = NOW()
                WHERE file_id = %s AND deleted_at IS NULL
                RETURNING {_COLUMNS}
                """,
                (size_bytes, checksum_sha256, current_version, file_id),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def soft_delete(self, conn: psycopg.Connection[Any], file_id: str) -> bool:
        cur = conn.execute(
            """
            UPDATE storage_files
            SET deleted_at = NOW(), updated_at = NOW()
            WHERE file_id = %s AND deleted_at IS NULL
            """,
            (file_id,),
        )
        return cur.rowcount > 0

    def search(
        self,
        conn: psycopg.Connection[Any],
        category: str | None,
        visibility: str | None,
        folded_text: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[FileRecord], int]:
        """Return one page of live records plus the total match count."""
        conditions = ["deleted_at IS NULL"]
        params: list[Any] = []
        if category is not None:
            conditions.append("category = %s")
            params.append(category)
        if visibility is not None:
            conditions.append("visibility = %s")
            params.append(visibility)
        if folded_text:
            conditions.append("search_text LIKE %s")
            params.append(_like_pattern(folded_text))
        where = " AND ".join(conditions)

        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT COUNT(*) AS total FROM storage_files WHERE {where}", params)
            count_row = cur.fetchone()
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM storage_files
                WHERE {where}
                ORDER BY created_at DESC, file_id
                LIMIT %s OFFSET %s
                """,
                [*params, limit, offset],
            )
            rows = cur.fetchall()
        total = count_row["total"] if count_row is not None else 0
        return [_to_record(row) for row in rows], total

    def find_by_checksum(
        self, conn: psycopg.Connection[Any], checksum: str, exclude_file_id: str | None = None
    ) -> list[FileRecord]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM storage_files
                WHERE checksum_sha256 = %s AND deleted_at IS NULL
                  AND (%s::uuid IS NULL OR file_id <> %s::uuid)
                ORDER BY created_at
                """,
                (checksum, exclude_file_id, exclude_file_id),
            )
            rows = cur.fetchall()
        return [_to_record(row) for row in rows]

    def record_access(self, conn: psycopg.Connection[Any], file_id: str) -> bool:
        cur = conn.execute(
            """
            UPDATE storage_files
            SET access_count = access_count + 1, last_accessed_at = NOW()
            WHERE file_id = %s AND deleted_at IS NULL
            """,
            (file_id,),
        )
        return cur.rowcount > 0

    def set_physical_verified(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        physical_location: str,
        verified_by: int | None,
    ) -> FileRecord | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE storage_files
                SET has_physical_copy = TRUE,
                    physical_location = %s,
                    physical_verified_at = NOW(),
                    physical_verified_by = %s,
                    updated_at = NOW()
                WHERE file_id = %s AND deleted_at IS NULL
                RETURNING {_COLUMNS}
                """,
                (physical_location, verified_by, file_id),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def insert_status_history(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        previous_status: str | None,
        new_status: str,
        changed_by: int | None,
        note: str | None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO storage_status_history
                (file_id, previous_status, new_status, changed_by, change_note)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (file_id, previous_status, new_status, changed_by, note),
        )

    def status_history(
        self, conn: psycopg.Connection[Any], file_id: str
    ) -> list[dict[str, Any]]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT previous_status, new_status, changed_by, change_note, changed_at
                FROM storage_status_history
                WHERE file_id = %s
                ORDER BY changed_at, id
                """,
                (file_id,),
            )
            return list(cur.fetchall())

    def purge_deleted(self, conn: psycopg.Connection[Any]) -> list[str]:
        """Hard-delete soft-deleted files with no tier copies and no open queue work."""
        with conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM storage_files f
                WHERE f.deleted_at IS NOT NULL
                  AND NOT EXISTS (
                      SELECT 1 FROM storage_locations l WHERE l.file_id = f.file_id
                  )
                  AND NOT EXISTS (
                      SELECT 1 FROM sync_queue q
                      WHERE q.file_id = f.file_id
                        AND q.status IN ('pending', 'processing')
                  )
                RETURNING f.file_id
                """
            )
            rows = cur.fetchall()
        return [str(row[0]) for row in rows]
