from pathlib import Path
from typing import Any

import psycopg
import pytest

from tierstore.extraction.factory import DOCX_MIME_TYPE
from tierstore.main import Services
from tierstore.registry.models import FileMetadata


@pytest.mark.integration
class TestWorkerIntegration:
    def test_worker_places_copies_then_runs_discovery(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        outcome = services.registry.upload(
            budget_pdf,
            FileMetadata(filename="budget.pdf", visibility="public"),
            sync_to_collab=True,
        )

        services.worker.run(max_items=4)

        locations = {loc.tier: loc for loc in services.registry.locations(outcome.file_id)}
        assert set(locations) == {"local", "cloud", "cdn", "collab"}
        for tier in ("cloud", "cdn", "collab"):
            stored = tmp_path / tier / locations[tier].provider_ref
            assert stored.read_bytes() == budget_pdf.read_bytes()
        assert locations["cdn"].url is not None
        stats = services.queue.stats()
        assert stats["completed"] == 3
        assert stats["pending"] == 0
        assert services.discovery.get(outcome.file_id).discovery_status == "needs_review"

    def test_failed_transfer_is_retried_later(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        outcome = services.registry.upload(budget_pdf, FileMetadata(filename="budget.pdf"))
        [local] = services.registry.locations(outcome.file_id)
        (tmp_path / "local" / local.provider_ref).unlink()

        services.worker.run(max_items=1)

        [item] = services.queue.list_for_file(outcome.file_id)
        assert item.status == "pending"
        assert item.attempts == 1
        assert item.error_message is not None and "not found" in item.error_message

    def test_crashed_claim_is_picked_up_by_another_worker(
        self,
        services: Services,
        tmp_path: Path,
        sample_docx_bytes: bytes,
        db_conn: psycopg.Connection[Any],
    ) -> None:
        source = tmp_path / "minutes.docx"
        source.write_bytes(sample_docx_bytes)
        outcome = services.registry.upload(
            source, FileMetadata(filename="minutes.docx", mime_type=DOCX_MIME_TYPE)
        )
        claimed = services.queue.dequeue_next()
        assert claimed is not None and claimed.to_tier == "cloud"
        db_conn.execute(
            "UPDATE sync_queue SET locked_at = NOW() - interval '20 minutes' WHERE id = %s",
            (claimed.id,),
        )
        db_conn.commit()

        services.worker.run(max_items=1)

        item = services.queue.get(claimed.id)
        assert item.status == "completed"
        assert item.attempts == 0
        assert "cloud" in {loc.tier for loc in services.registry.locations(outcome.file_id)}
