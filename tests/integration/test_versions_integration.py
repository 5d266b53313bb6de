from pathlib import Path

import pytest

from tierstore.main import Services
from tierstore.registry.exceptions import VersionNotFoundError
from tierstore.registry.models import FileMetadata


def _edited(tmp_path: Path, name: str, content: bytes) -> Path:
    path = tmp_path / "edits" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _refs(services: Services, file_id: str) -> dict[str, str]:
    return {loc.tier: loc.provider_ref for loc in services.registry.locations(file_id)}


@pytest.mark.integration
class TestNewVersion:
    def test_new_version_replaces_copies_on_every_tier(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        outcome = services.registry.upload(
            budget_pdf, FileMetadata(filename="budget.pdf", visibility="public")
        )
        file_id = outcome.file_id
        services.worker.run(max_items=2)
        first_ref = f"{file_id}/v1/budget.pdf"
        assert set(_refs(services, file_id).values()) == {first_ref}

        edited = _edited(tmp_path, "budget.pdf", b"%PDF-1.4 budget with fixed totals")
        version = services.versions.create_version(file_id, edited, "fixed totals", 4)
        services.worker.run(max_items=2)

        second_ref = f"{file_id}/v2/budget.pdf"
        assert version.version_number == 2
        record = services.registry.get(file_id)
        assert (record.current_version, record.size_bytes) == (2, edited.stat().st_size)
        assert _refs(services, file_id) == {
            "local": second_ref,
            "cloud": second_ref,
            "cdn": second_ref,
        }
        for tier in ("cloud", "cdn"):
            assert (tmp_path / tier / second_ref).read_bytes() == edited.read_bytes()
            assert not (tmp_path / tier / first_ref).exists()
        assert (tmp_path / "local" / first_ref).read_bytes() == budget_pdf.read_bytes()
        assert services.registry.get_file_url(file_id).endswith(second_ref)

    def test_cached_copy_is_refreshed(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        file_id = services.registry.upload(budget_pdf, FileMetadata(filename="budget.pdf")).file_id
        services.cache.get_or_populate(file_id)

        edited = _edited(tmp_path, "budget.pdf", b"%PDF-1.4 second draft")
        services.versions.create_version(file_id, edited)
        lookup = services.cache.get_or_populate(file_id)

        assert lookup.hit is False
        assert (tmp_path / "cache" / lookup.entry.cache_ref).read_bytes() == edited.read_bytes()


@pytest.mark.integration
class TestHistory:
    def test_revert_compare_and_prune(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        file_id = services.registry.upload(budget_pdf, FileMetadata(filename="budget.pdf")).file_id
        services.versions.create_version(file_id, _edited(tmp_path, "b2.pdf", b"%PDF-1.4 v2"))
        services.versions.create_version(file_id, _edited(tmp_path, "b3.pdf", b"%PDF-1.4 v3"))

        reverted = services.versions.revert_to_version(file_id, 1, reason="bad edit")

        versions = services.versions.list_versions(file_id)
        assert [v.version_number for v in versions] == [4, 3, 2, 1]
        assert [v.is_current for v in versions] == [True, False, False, False]
        assert reverted.change_description == "Reverted to version 1: bad edit"
        local_ref = _refs(services, file_id)["local"]
        assert (tmp_path / "local" / local_ref).read_bytes() == budget_pdf.read_bytes()
        comparison = services.versions.compare_versions(versions[3].id, reverted.id)
        assert comparison.same_content is True
        assert comparison.size_difference == 0

        assert services.versions.prune_old_versions(file_id, keep_versions=1) == 1

        assert [v.version_number for v in services.versions.list_versions(file_id)] == [4, 3, 1]
        assert not (tmp_path / "local" / f"{file_id}/v2/budget.pdf").exists()
        with pytest.raises(VersionNotFoundError):
            services.versions.revert_to_version(file_id, 2)

    def test_summary(self, services: Services, budget_pdf: Path, tmp_path: Path) -> None:
        file_id = services.registry.upload(budget_pdf, FileMetadata(filename="budget.pdf")).file_id
        edited = _edited(tmp_path, "budget.pdf", b"%PDF-1.4 short")
        services.versions.create_version(file_id, edited, created_by=4)

        summary = services.versions.history_summary(file_id)

        assert summary["total_versions"] == 2
        assert summary["current_version"] == 2
        assert summary["unique_uploaders"] == 1
        assert summary["total_size_change"] == edited.stat().st_size - budget_pdf.stat().st_size

    def test_purge_removes_archived_versions(
        self, services: Services, budget_pdf: Path, tmp_path: Path
    ) -> None:
        file_id = services.registry.upload(budget_pdf, FileMetadata(filename="budget.pdf")).file_id
        services.versions.create_version(file_id, _edited(tmp_path, "b2.pdf", b"%PDF-1.4 v2"))
        services.registry.delete(file_id)
        services.worker.run(max_items=2)

        assert services.registry.purge_deleted() == [file_id]

        assert not (tmp_path / "local" / f"{file_id}/v1/budget.pdf").exists()
        assert not (tmp_path / "local" / f"{file_id}/v2/budget.pdf").exists()
