from typing import Any

import psycopg
from psycopg.rows import dict_row

from tierstore.database.models import CacheEntry

_COLUMNS = """
    id, file_id, cache_ref, cache_size, cached_at, expires_at, hit_count,
    miss_count, last_accessed_at
"""


def _to_entry(row: dict[str, Any]) -> CacheEntry:
    return CacheEntry(
        id=row["id"],
        file_id=str(row["file_id"]),
        cache_ref=row["cache_ref"],
        cache_size=row["cache_size"],
        cached_at=row["cached_at"],
        expires_at=row["expires_at"],
        hit_count=row["hit_count"],
        miss_count=row["miss_count"],
        last_accessed_at=row["last_accessed_at"],
    )


class CacheRepository:
    """Database operations for the storage_cache table.

    Methods never commit; the calling service owns the transaction.
    """

    def find(self, conn: psycopg.Connection[Any], file_id: str) -> CacheEntry | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM storage_cache WHERE file_id = %s", (file_id,))
            row = cur.fetchone()
        return _to_entry(row) if row is not None else None

    def record_hit(self, conn: psycopg.Connection[Any], file_id: str) -> CacheEntry | None:
        """Count a hit on a live entry. Returns None if the entry is missing or expired."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE storage_cache
                SET hit_count = hit_count + 1, last_accessed_at = NOW()
                WHERE file_id = %s AND expires_at > NOW()
                RETURNING {_COLUMNS}
                """,
                (file_id,),
            )
            row = cur.fetchone()
        return _to_entry(row) if row is not None else None

    def record_miss(self, conn: psycopg.Connection[Any], file_id: str) -> bool:
        """Count a miss against a live entry. Returns False if there is none to count against."""
        cur = conn.execute(
            """
            UPDATE storage_cache
            SET miss_count = miss_count + 1, last_accessed_at = NOW()
            WHERE file_id = %s AND expires_at > NOW()
            """,
            (file_id,),
        )
        return cur.rowcount > 0

    def store(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        cache_ref: str,
        cache_size: int,
        ttl_seconds: int,
        *,
        misses: int,
        accessed: bool,
    ) -> CacheEntry:
        """Create or refresh the entry for ``file_id``.

        A live entry keeps its hit and miss history and gains ``misses``. A
        new or expired entry starts over at zero hits and ``misses`` misses,
        so warm writes (``misses=0``) never move the hit rate.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO storage_cache
                    (file_id, cache_ref, cache_size, cached_at, expires_at,
                     hit_count, miss_count, last_accessed_at)
                VALUES (%s, %s, %s, NOW(), NOW() + make_interval(secs => %s), 0, %s,
                        CASE WHEN %s THEN NOW() END)
                ON CONFLICT (file_id) DO UPDATE
                SET cache_ref = EXCLUDED.cache_ref,
                    cache_size = EXCLUDED.cache_size,
                    cached_at = EXCLUDED.cached_at,
                    expires_at = EXCLUDED.expires_at,
                    hit_count = CASE WHEN storage_cache.expires_at > NOW()
                                     THEN storage_cache.hit_count ELSE 0 END,
                    miss_count = EXCLUDED.miss_count
                                 + CASE WHEN storage_cache.expires_at > NOW()
                                        THEN storage_cache.miss_count ELSE 0 END,
                    last_accessed_at = COALESCE(
                        EXCLUDED.last_accessed_at, storage_cache.last_accessed_at
                    )
                RETURNING {_COLUMNS}
                """,
                (file_id, cache_ref, cache_size, ttl_seconds, misses, accessed),
            )
            row = cur.fetchone()
        assert row is not None
        return _to_entry(row)

    def warm_candidates(
        self, conn: psycopg.Connection[Any], limit: int
    ) -> list[tuple[str, str]]:
        """Live files without a live cache entry, most used first, as (file_id, filename)."""
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT f.file_id, f.filename
                FROM storage_files f
                LEFT JOIN storage_cache c
                       ON c.file_id = f.file_id AND c.expires_at > NOW()
                WHERE f.deleted_at IS NULL AND c.id IS NULL
                ORDER BY f.access_count DESC,
                         f.last_accessed_at DESC NULLS LAST,
                         f.created_at DESC
                LIMIT %s
                """,
                (limit,),
            )
            rows = cur.fetchall()
        return [(str(row[0]), row[1]) for row in rows]

    def delete_expired(self, conn: psycopg.Connection[Any]) -> list[CacheEntry]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"DELETE FROM storage_cache WHERE expires_at < NOW() RETURNING {_COLUMNS}"
            )
            rows = cur.fetchall()
        return [_to_entry(row) for row in rows]

    def delete_least_recent(
        self, conn: psycopg.Connection[Any], target_bytes: int
    ) -> list[CacheEntry]:
        """Evict least recently used entries until at most ``target_bytes`` remain.

        Entries never read (warm writes) go first, then by last access.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                WITH ranked AS (
                    SELECT id,
                           SUM(cache_size) OVER (
                               ORDER BY last_accessed_at ASC NULLS FIRST, cached_at, id
                           ) - cache_size AS freed_before,
                           SUM(cache_size) OVER () AS total
                    FROM storage_cache
                )
                DELETE FROM storage_cache c
                USING ranked r
                WHERE c.id = r.id AND r.total - r.freed_before > %s
                RETURNING c.id, c.file_id, c.cache_ref, c.cache_size, c.cached_at,
                          c.expires_at, c.hit_count, c.miss_count, c.last_accessed_at
                """,
                (target_bytes,),
            )
            rows = cur.fetchall()
        return [_to_entry(row) for row in rows]

    def delete(self, conn: psycopg.Connection[Any], file_id: str) -> CacheEntry | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"DELETE FROM storage_cache WHERE file_id = %s RETURNING {_COLUMNS}",
                (file_id,),
            )
            row = cur.fetchone()
        return _to_entry(row) if row is not None else None

    def stats(self, conn: psycopg.Connection[Any]) -> dict[str, Any]:
        """Aggregate counters. Hits and misses are summed over live entries only."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) FILTER (WHERE expires_at > NOW()) AS entries,
                    COALESCE(SUM(cache_size) FILTER (WHERE expires_at > NOW()), 0) AS bytes,
                    COALESCE(SUM(hit_count) FILTER (WHERE expires_at > NOW()), 0) AS hits,
                    COALESCE(SUM(miss_count) FILTER (WHERE expires_at > NOW()), 0) AS misses,
                    COUNT(*) FILTER (WHERE expires_at <= NOW()) AS expired
                FROM storage_cache
                """
            )
            row = cur.fetchone()
        assert row is not None
        return {key: int(value) for key, value in row.items()}
