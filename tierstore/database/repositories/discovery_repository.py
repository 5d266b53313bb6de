from datetime import date
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from tierstore.database.models import DiscoveryRecord, KeyEntities

_COLUMNS = """
    file_id, discovery_status, discovered_category, discovered_subcategory,
    confidence_score, content_summary, key_points, auto_tags, key_entities,
    document_date, language, attempts, error_message, review_decision,
    reviewed_by, submitted_at, started_at, processed_at, reviewed_at
"""


def _to_record(row: dict[str, Any]) -> DiscoveryRecord:
    score = row["confidence_score"]
    return DiscoveryRecord(
        file_id=str(row["file_id"]),
        discovery_status=row["discovery_status"],
        discovered_category=row["discovered_category"],
        discovered_subcategory=row["discovered_subcategory"],
        confidence_score=float(score) if score is not None else None,
        content_summary=row["content_summary"],
        key_points=list(row["key_points"] or []),
        auto_tags=list(row["auto_tags"] or []),
        key_entities=KeyEntities.from_dict(row["key_entities"]),
        document_date=row["document_date"],
        language=row["language"],
        attempts=row["attempts"],
        error_message=row["error_message"],
        review_decision=row["review_decision"],
        reviewed_by=row["reviewed_by"],
        submitted_at=row["submitted_at"],
        started_at=row["started_at"],
        processed_at=row["processed_at"],
        reviewed_at=row["reviewed_at"],
    )


class DiscoveryRepository:
    """Database operations for the document_discovery table.

    Methods never commit; the calling service owns the transaction.
    """

    def submit(self, conn: psycopg.Connection[Any], file_id: str) -> DiscoveryRecord | None:
        """Create a pending record, or reset an existing one that is not mid-processing.

        Returns None when the file is currently being processed.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO document_discovery (file_id) VALUES (%s)
                ON CONFLICT (file_id) DO UPDATE
                SET discovery_status = 'pending',
                    discovered_category = NULL,
                    discovered_subcategory = NULL,
                    confidence_score = NULL,
                    content_summary = NULL,
                    key_points = '{{}}',
                    auto_tags = '{{}}',
                    key_entities = EXCLUDED.key_entities,
                    document_date = NULL,
                    language = NULL,
                    attempts = 0,
                    error_message = NULL,
                    review_decision = NULL,
                    reviewed_by = NULL,
                    submitted_at = clock_timestamp(),
                    started_at = NULL,
                    processed_at = NULL,
                    reviewed_at = NULL
                WHERE document_discovery.discovery_status <> 'processing'
                RETURNING {_COLUMNS}
                """,
                (file_id,),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def claim_batch(
        self, conn: psycopg.Connection[Any], limit: int, max_attempts: int
    ) -> list[DiscoveryRecord]:
        """Move up to ``limit`` pending records to processing, oldest submission first.

        Records that already failed ``max_attempts`` times stay pending but are
        left for an explicit ``process`` call.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE document_discovery
                SET discovery_status = 'processing', started_at = clock_timestamp()
                WHERE file_id IN (
                    SELECT file_id FROM document_discovery
                    WHERE discovery_status = 'pending' AND attempts < %s
                    ORDER BY submitted_at, file_id
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {_COLUMNS}
                """,
                (max_attempts, limit),
            )
            rows = cur.fetchall()
        records = [_to_record(row) for row in rows]
        records.sort(key=lambda r: (r.submitted_at is None, r.submitted_at, r.file_id))
        return records

    def claim(self, conn: psycopg.Connection[Any], file_id: str) -> DiscoveryRecord | None:
        """Move one specific pending record to processing. None if it is not pending."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE document_discovery
                SET discovery_status = 'processing', started_at = clock_timestamp()
                WHERE file_id = %s AND discovery_status = 'pending'
                RETURNING {_COLUMNS}
                """,
                (file_id,),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def save_result(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        status: str,
        category: str,
        subcategory: str | None,
        confidence: float,
        summary: str,
        key_points: list[str],
        tags: list[str],
        entities: KeyEntities,
        document_date: date | None,
        language: str | None,
    ) -> DiscoveryRecord | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE document_discovery
                SET discovery_status = %s,
                    discovered_category = %s,
                    discovered_subcategory = %s,
                    confidence_score = %s,
                    content_summary = %s,
                    key_points = %s,
                    auto_tags = %s,
                    key_entities = %s,
                    document_date = %s,
                    language = %s,
                    error_message = NULL,
                    processed_at = NOW()
                WHERE file_id = %s AND discovery_status = 'processing'
                RETURNING {_COLUMNS}
                """,
                (
                    status,
                    category,
                    subcategory,
                    round(confidence, 2),
                    summary,
                    key_points,
                    tags,
                    Jsonb(entities.to_dict()),
                    document_date,
                    language,
                    file_id,
                ),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def record_failure(
        self, conn: psycopg.Connection[Any], file_id: str, error_message: str
    ) -> DiscoveryRecord | None:
        """Return a processing record to pending with the error and one more attempt."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE document_discovery
                SET discovery_status = 'pending',
                    attempts = attempts + 1,
                    error_message = %s,
                    started_at = NULL
                WHERE file_id = %s AND discovery_status = 'processing'
                RETURNING {_COLUMNS}
                """,
                (error_message, file_id),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def find(
        self, conn: psycopg.Connection[Any], file_id: str, for_update: bool = False
    ) -> DiscoveryRecord | None:
        query = f"SELECT {_COLUMNS} FROM document_discovery WHERE file_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, (file_id,))
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def mark_reviewed(
        self,
        conn: psycopg.Connection[Any],
        file_id: str,
        decision: str,
        reviewed_by: int | None,
    ) -> DiscoveryRecord | None:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE document_discovery
                SET discovery_status = 'reviewed',
                    review_decision = %s,
                    reviewed_by = %s,
                    reviewed_at = NOW()
                WHERE file_id = %s AND reviewed_at IS NULL
                  AND discovery_status IN ('needs_review', 'reviewed')
                RETURNING {_COLUMNS}
                """,
                (decision, reviewed_by, file_id),
            )
            row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def requeue_stale(self, conn: psycopg.Connection[Any], timeout_seconds: int) -> list[str]:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE document_discovery
                SET discovery_status = 'pending', started_at = NULL
                WHERE discovery_status = 'processing'
                  AND started_at < clock_timestamp() - make_interval(secs => %s)
                RETURNING file_id
                """,
                (timeout_seconds,),
            )
            rows = cur.fetchall()
        return [str(row[0]) for row in rows]

    def list_awaiting_decision(
        self, conn: psycopg.Connection[Any], limit: int, offset: int
    ) -> tuple[list[DiscoveryRecord], int]:
        """Processed records with no accept/reject yet, least confident first."""
        where = "discovery_status IN ('needs_review', 'reviewed') AND reviewed_at IS NULL"
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT COUNT(*) AS total FROM document_discovery WHERE {where}")
            count_row = cur.fetchone()
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM document_discovery
                WHERE {where}
                ORDER BY confidence_score ASC NULLS FIRST, processed_at, file_id
                LIMIT %s OFFSET %s
                """,
                (limit, offset),
            )
            rows = cur.fetchall()
        total = count_row["total"] if count_row is not None else 0
        return [_to_record(row) for row in rows], total

    def stats(
        self, conn: psycopg.Connection[Any], high_threshold: float, medium_threshold: float
    ) -> dict[str, int]:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE discovery_status = 'pending') AS pending,
                    COUNT(*) FILTER (WHERE discovery_status = 'processing') AS processing,
                    COUNT(*) FILTER (
                        WHERE discovery_status IN ('needs_review', 'reviewed')
                          AND reviewed_at IS NULL
                    ) AS awaiting_decision,
                    COUNT(*) FILTER (
                        WHERE discovery_status IN ('needs_review', 'reviewed')
                          AND reviewed_at IS NULL
                          AND (discovery_status = 'needs_review'
                               OR confidence_score IS NULL OR confidence_score < %s)
                    ) AS needs_review,
                    COUNT(*) FILTER (WHERE review_decision = 'accepted') AS accepted,
                    COUNT(*) FILTER (WHERE review_decision = 'rejected') AS rejected,
                    COUNT(*) FILTER (WHERE confidence_score >= %s) AS high_confidence,
                    COUNT(*) FILTER (
                        WHERE confidence_score >= %s AND confidence_score < %s
                    ) AS medium_confidence,
                    COUNT(*) FILTER (WHERE confidence_score < %s) AS low_confidence
                FROM document_discovery
                """,
                (
                    high_threshold,
                    high_threshold,
                    medium_threshold,
                    high_threshold,
                    medium_threshold,
                ),
            )
            row = cur.fetchone()
        assert row is not None
        return {key: int(value) for key, value in row.items()}
