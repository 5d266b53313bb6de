from typing import Any

import psycopg

from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.factory import AnalyzerFactory
from tierstore.config.settings import Settings
from tierstore.database.connection import get_connection
from tierstore.database.models import DiscoveryRecord
from tierstore.database.pagination import Page, page_bounds
from tierstore.database.repositories.discovery_repository import DiscoveryRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.discovery.exceptions import (
    DiscoveryError,
    DiscoveryNotFoundError,
    InvalidReviewTransitionError,
)
from tierstore.discovery.pipeline import DiscoveryContext, PipelineStep, confidence_band
from tierstore.discovery.steps import (
    AnalyzeStep,
    ExtractTextStep,
    LoadFileStep,
    PersistDiscoveryStep,
)
from tierstore.extraction.factory import TextExtractorFactory
from tierstore.logging.logger import Log
from tierstore.registry.exceptions import RegistryError
from tierstore.registry.registry import FileRegistry
from tierstore.storage.resolver import TierResolver


class DiscoveryService:
    """Runs documents through the discovery pipeline and owns the review workflow.

    Pipeline: load -> extract text -> analyze -> persist.
    A failure anywhere in the pipeline puts the record back to ``pending``
    with the error message and one more attempt; it never advances to
    ``needs_review`` or ``reviewed``.
    """

    def __init__(
        self,
        *,
        discovery_repo: DiscoveryRepository,
        registry: FileRegistry,
        steps: list[PipelineStep],
        high_threshold: float = 0.75,
        medium_threshold: float = 0.50,
        max_attempts: int = 3,
        auto_accept: bool = False,
    ) -> None:
        self._discovery_repo = discovery_repo
        self._registry = registry
        self._steps = steps
        self._high_threshold = high_threshold
        self._medium_threshold = medium_threshold
        self._max_attempts = max_attempts
        self._auto_accept = auto_accept

    def submit(self, file_id: str) -> DiscoveryRecord:
        """Queue a file for discovery, resetting any previous result."""
        self._registry.get(file_id)
        with get_connection() as conn:
            record = self._discovery_repo.submit(conn, file_id)
            conn.commit()
        if record is None:
            raise DiscoveryError(f"File {file_id} is already being processed")
        Log.info(f"Submitted file {file_id} for discovery")
        return record

    def process(self, file_id: str) -> DiscoveryRecord:
        """Process one pending record now, regardless of its attempt count.

        A file that was never submitted is submitted first.
        """
        with get_connection() as conn:
            record = self._discovery_repo.claim(conn, file_id)
            conn.commit()
        if record is None:
            existing = self.get_or_none(file_id)
            if existing is not None:
                raise DiscoveryError(
                    f"Discovery for file {file_id} is {existing.discovery_status}, not pending"
                )
            self.submit(file_id)
            with get_connection() as conn:
                record = self._discovery_repo.claim(conn, file_id)
                conn.commit()
            if record is None:
                raise DiscoveryError(f"Could not claim discovery record for file {file_id}")
        return self._run(record)

    def process_batch(self, limit: int) -> list[DiscoveryRecord]:
        """Claim up to ``limit`` pending records and process each one."""
        with get_connection() as conn:
            claimed = self._discovery_repo.claim_batch(conn, limit, self._max_attempts)
            conn.commit()
        if claimed:
            Log.info(f"Claimed {len(claimed)} discovery record(s)")
        return [self._run(record) for record in claimed]

    def accept(self, file_id: str, reviewed_by: int | None = None) -> DiscoveryRecord:
        """Apply the suggested category, subcategory and tags to the file record."""
        with get_connection() as conn:
            with conn.transaction():
                current = self._locked_awaiting(conn, file_id, "accept")
                self._registry.apply_classification(
                    conn,
                    file_id,
                    current.discovered_category,
                    current.discovered_subcategory,
                    current.auto_tags,
                )
                record = self._discovery_repo.mark_reviewed(
                    conn, file_id, "accepted", reviewed_by
                )
        if record is None:
            raise InvalidReviewTransitionError(f"Discovery for file {file_id} was not accepted")
        Log.info(
            f"Accepted discovery for file {file_id}: category={record.discovered_category}"
        )
        return record

    def reject(self, file_id: str, reviewed_by: int | None = None) -> DiscoveryRecord:
        """Discard the suggestions. The file record is left untouched."""
        with get_connection() as conn:
            with conn.transaction():
                self._locked_awaiting(conn, file_id, "reject")
                record = self._discovery_repo.mark_reviewed(
                    conn, file_id, "rejected", reviewed_by
                )
        if record is None:
            raise InvalidReviewTransitionError(f"Discovery for file {file_id} was not rejected")
        Log.info(f"Rejected discovery for file {file_id}")
        return record

    def requeue_stale(self, timeout_seconds: int) -> list[str]:
        with get_connection() as conn:
            file_ids = self._discovery_repo.requeue_stale(conn, timeout_seconds)
            conn.commit()
        for file_id in file_ids:
            Log.warning(
                f"Discovery for file {file_id} was stuck in processing, reverted to pending"
            )
        return file_ids

    def get(self, file_id: str) -> DiscoveryRecord:
        record = self.get_or_none(file_id)
        if record is None:
            raise DiscoveryNotFoundError(f"No discovery record for file {file_id}")
        return record

    def get_or_none(self, file_id: str) -> DiscoveryRecord | None:
        with get_connection() as conn:
            return self._discovery_repo.find(conn, file_id)

    def needs_review(self, record: DiscoveryRecord) -> bool:
        return record.needs_review(self._high_threshold)

    def band(self, record: DiscoveryRecord) -> str:
        return confidence_band(
            record.confidence_score, self._high_threshold, self._medium_threshold
        )

    def list_for_review(self, page: int = 1, per_page: int = 20) -> Page[DiscoveryRecord]:
        """Processed records still awaiting accept/reject, least confident first."""
        limit, offset = page_bounds(page, per_page)
        with get_connection() as conn:
            items, total = self._discovery_repo.list_awaiting_decision(conn, limit, offset)
        return Page(items=items, total=total, page=page, per_page=per_page)

    def stats(self) -> dict[str, int]:
        with get_connection() as conn:
            return self._discovery_repo.stats(
                conn, self._high_threshold, self._medium_threshold
            )

    def _run(self, record: DiscoveryRecord) -> DiscoveryRecord:
        file_id = record.file_id
        Log.info(f"Processing discovery for file {file_id} (attempt {record.attempts + 1})")
        context = DiscoveryContext(file_id=file_id)
        try:
            for step in self._steps:
                context = step.run(context)
        except Exception as exc:
            return self._handle_failure(record, exc)

        result = context.record
        if result is None:
            return self._handle_failure(record, DiscoveryError("Pipeline produced no result"))
        if (
            self._auto_accept
            and result.confidence_score is not None
            and result.confidence_score >= self._high_threshold
        ):
            try:
                return self.accept(file_id)
            except (DiscoveryError, RegistryError) as exc:
                Log.warning(f"Auto-accept for file {file_id} skipped: {exc}")
        return result

    def _handle_failure(self, record: DiscoveryRecord, exc: Exception) -> DiscoveryRecord:
        Log.error(f"Discovery for file {record.file_id} failed: {exc}")
        with get_connection() as conn:
            failed = self._discovery_repo.record_failure(conn, record.file_id, str(exc))
            conn.commit()
        if failed is None:
            Log.warning(f"Discovery for file {record.file_id} was no longer processing")
            return self.get(record.file_id)
        if failed.attempts >= self._max_attempts:
            Log.error(
                f"Discovery for file {record.file_id} failed {failed.attempts} times, "
                "batch processing will skip it"
            )
        else:
            Log.warning(f"Discovery for file {record.file_id} returned to pending")
        return failed

    def _locked_awaiting(
        self, conn: psycopg.Connection[Any], file_id: str, action: str
    ) -> DiscoveryRecord:
        current = self._discovery_repo.find(conn, file_id, for_update=True)
        if current is None:
            raise DiscoveryNotFoundError(f"No discovery record for file {file_id}")
        if not current.awaiting_decision:
            raise InvalidReviewTransitionError(
                f"Cannot {action} discovery for file {file_id}: "
                f"status={current.discovery_status}, decision={current.review_decision}"
            )
        return current


def build_discovery_service(
    settings: Settings,
    *,
    registry: FileRegistry,
    file_repo: FileRepository,
    resolver: TierResolver,
    discovery_repo: DiscoveryRepository | None = None,
    analyzer: BaseDocumentAnalyzer | None = None,
) -> DiscoveryService:
    """Build a DiscoveryService with the configured extractor and analyzer."""
    discovery_repo = discovery_repo or DiscoveryRepository()
    steps: list[PipelineStep] = [
        LoadFileStep(file_repo, resolver),
        ExtractTextStep(
            TextExtractorFactory.from_settings(settings), settings.discovery_max_chars
        ),
        AnalyzeStep(analyzer or AnalyzerFactory.create(settings)),
        PersistDiscoveryStep(discovery_repo, settings.discovery_high_confidence),
    ]
    return DiscoveryService(
        discovery_repo=discovery_repo,
        registry=registry,
        steps=steps,
        high_threshold=settings.discovery_high_confidence,
        medium_threshold=settings.discovery_medium_confidence,
        max_attempts=settings.discovery_max_attempts,
        auto_accept=settings.discovery_auto_accept,
    )
