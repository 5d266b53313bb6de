from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tierstore.database.models import FileLocation, FileRecord
from tierstore.registry.exceptions import (
    FileAccessDeniedError,
    FileRecordNotFoundError,
    InvalidFileDataError,
    InvalidSearchError,
)
from tierstore.registry.models import FileMetadata
from tierstore.registry.registry import FileRegistry, _merge_tags, safe_filename
from tierstore.storage.exceptions import StorageError
from tierstore.storage.models import UploadResult
from tierstore.sync.constants import PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_NORMAL

FILE_ID = "0b7e7dc2-5bd6-4a3b-9d55-3c1f0d3e9a10"


def _mock_connection(mock_get_conn: MagicMock) -> MagicMock:
    mock_conn = MagicMock()
    mock_get_conn.return_value.__enter__ = MagicMock(return_value=mock_conn)
    mock_get_conn.return_value.__exit__ = MagicMock(return_value=False)
    return mock_conn


def _make_record(**overrides: object) -> FileRecord:
    values: dict[str, object] = {
        "file_id": FILE_ID,
        "filename": "budget.pdf",
        "mime_type": "application/pdf",
        "size_bytes": 2048,
    }
    values.update(overrides)
    return FileRecord(**values)  # type: ignore[arg-type]


def _make_registry(
    enabled: tuple[str, ...] = ("local", "cloud", "cache", "collab", "cdn"),
) -> tuple[FileRegistry, dict[str, MagicMock]]:
    mocks = {
        "file_repo": MagicMock(),
        "location_repo": MagicMock(),
        "discovery_repo": MagicMock(),
        "cache_repo": MagicMock(),
        "version_repo": MagicMock(),
        "queue": MagicMock(),
        "tiers": MagicMock(),
        "normalizer": MagicMock(),
    }
    adapters: dict[str, MagicMock] = {}

    def _adapter(tier: str) -> MagicMock:
        return adapters.setdefault(tier, MagicMock(name=f"{tier}-adapter"))

    mocks["tiers"].is_enabled.side_effect = lambda tier: tier in enabled
    mocks["tiers"].get.side_effect = _adapter
    mocks["tiers"].adapters = adapters
    mocks["file_repo"].insert.side_effect = lambda conn, record, search_text: record
    mocks["file_repo"].find_by_checksum.return_value = []
    mocks["normalizer"].fold.side_effect = lambda text: text.lower()
    mocks["normalizer"].build_search_text.return_value = "budget.pdf"
    next_id = iter(range(100, 200))
    mocks["queue"].enqueue_in.side_effect = lambda *args, **kwargs: next(next_id)
    registry = FileRegistry(**mocks)  # type: ignore[arg-type]
    return registry, mocks


def _source_file(tmp_path: Path) -> Path:
    path = tmp_path / "budget.pdf"
    path.write_bytes(b"%PDF-1.4 budget")
    return path


def _enqueued(queue: MagicMock) -> list[tuple[object, ...]]:
    """(operation, from_tier, to_tier, priority) of every enqueue_in call."""
    return [call.args[2:6] for call in queue.enqueue_in.call_args_list]


class TestSafeFilename:
    def test_strips_directories_and_unsafe_characters(self) -> None:
        assert safe_filename("../minutes 2024 (final).docx") == "minutes-2024-final-.docx"

    def test_never_empty(self) -> None:
        assert safe_filename("...") == "file"


class TestMergeTags:
    def test_case_insensitive_union_keeps_first_spelling(self) -> None:
        assert _merge_tags(["Budget", "2024"], ["budget", " audit ", ""]) == [
            "Budget",
            "2024",
            "audit",
        ]


class TestUpload:
    @patch("tierstore.registry.registry.get_connection")
    def test_private_upload_queues_cloud_only(self, mock_get_conn: MagicMock, tmp_path: Path) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        local = mocks["tiers"].get("local")
        local.upload.return_value = UploadResult("x/budget.pdf", None, 15, "application/pdf")
        local.get_provider_name.return_value = "local"

        outcome = registry.upload(_source_file(tmp_path), FileMetadata(filename="budget.pdf"))

        assert _enqueued(mocks["queue"]) == [("upload", "local", "cloud", PRIORITY_NORMAL)]
        assert outcome.queued_item_ids == [100]
        assert outcome.record.size_bytes == 15
        assert len(outcome.record.checksum_sha256) == 64
        assert outcome.record.mime_type == "application/pdf"
        mocks["discovery_repo"].submit.assert_called_once()
        location = mocks["location_repo"].upsert.call_args.args[1]
        assert location.tier == "local"
        assert location.provider_ref == "x/budget.pdf"
        assert local.upload.call_args.args[1].endswith("/v1/budget.pdf")
        version_args = mocks["version_repo"].insert_current.call_args.args
        assert version_args[2:7] == (
            1, 15, outcome.record.checksum_sha256, "x/budget.pdf", "Initial upload"
        )

    @patch("tierstore.registry.registry.get_connection")
    def test_caller_metadata_is_left_untouched(
        self, mock_get_conn: MagicMock, tmp_path: Path
    ) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["tiers"].get("local").upload.return_value = UploadResult(
            "x/budget.pdf", None, 15, "application/pdf"
        )
        metadata = FileMetadata(filename="budget.pdf")

        registry.upload(_source_file(tmp_path), metadata)

        assert metadata == FileMetadata(filename="budget.pdf")

    @patch("tierstore.registry.registry.get_connection")
    def test_public_upload_also_queues_cdn_with_high_priority(
        self, mock_get_conn: MagicMock, tmp_path: Path
    ) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["tiers"].get("local").upload.return_value = UploadResult(
            "x/budget.pdf", None, 15, "application/pdf"
        )

        registry.upload(
            _source_file(tmp_path),
            FileMetadata(filename="budget.pdf", visibility="public"),
            sync_to_collab=True,
        )

        assert _enqueued(mocks["queue"]) == [
            ("upload", "local", "cloud", PRIORITY_NORMAL),
            ("upload", "local", "cdn", PRIORITY_HIGH),
            ("upload", "local", "collab", PRIORITY_NORMAL),
        ]

    @patch("tierstore.registry.registry.get_connection")
    def test_disabled_cdn_is_skipped(self, mock_get_conn: MagicMock, tmp_path: Path) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry(enabled=("local", "cloud", "cache", "collab"))
        mocks["tiers"].get("local").upload.return_value = UploadResult(
            "x/budget.pdf", None, 15, "application/pdf"
        )

        registry.upload(
            _source_file(tmp_path), FileMetadata(filename="budget.pdf", visibility="public")
        )

        assert _enqueued(mocks["queue"]) == [("upload", "local", "cloud", PRIORITY_NORMAL)]

    @patch("tierstore.registry.registry.get_connection")
    def test_failed_transaction_removes_local_copy(
        self, mock_get_conn: MagicMock, tmp_path: Path
    ) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        local = mocks["tiers"].get("local")
        local.upload.return_value = UploadResult("x/budget.pdf", None, 15, "application/pdf")
        mocks["file_repo"].insert.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError, match="db down"):
            registry.upload(_source_file(tmp_path), FileMetadata(filename="budget.pdf"))

        local.delete.assert_called_once_with("x/budget.pdf")

    def test_missing_source(self, tmp_path: Path) -> None:
        registry, _mocks = _make_registry()

        with pytest.raises(InvalidFileDataError, match="Source file not found"):
            registry.upload(tmp_path / "nope.pdf", FileMetadata(filename="nope.pdf"))

    def test_unknown_category_rejected_before_storage(self, tmp_path: Path) -> None:
        registry, mocks = _make_registry()

        with pytest.raises(InvalidFileDataError, match="Unknown category"):
            registry.upload(
                _source_file(tmp_path), FileMetadata(filename="budget.pdf", category="recipes")
            )

        mocks["tiers"].get("local").upload.assert_not_called()

    @patch("tierstore.registry.registry.get_connection")
    def test_reports_duplicates(self, mock_get_conn: MagicMock, tmp_path: Path) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["tiers"].get("local").upload.return_value = UploadResult(
            "x/budget.pdf", None, 15, "application/pdf"
        )
        other = "9d6f0c43-3f3a-4a0e-8a6c-0f0c5b0c1d11"
        mocks["file_repo"].find_by_checksum.return_value = [_make_record(file_id=other)]

        outcome = registry.upload(_source_file(tmp_path), FileMetadata(filename="budget.pdf"))

        assert outcome.duplicate_file_ids == [other]


class TestUpdate:
    @patch("tierstore.registry.registry.get_connection")
    def test_making_private_removes_from_cdn_first(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record(visibility="public")
        mocks["file_repo"].update_fields.return_value = _make_record(visibility="private")
        mocks["location_repo"].find.return_value = FileLocation(
            file_id=FILE_ID, tier="cdn", provider="local", provider_ref="x/budget.pdf"
        )

        registry.update(FILE_ID, {"visibility": "private"})

        assert _enqueued(mocks["queue"]) == [("delete", None, "cdn", PRIORITY_CRITICAL)]

    @patch("tierstore.registry.registry.get_connection")
    def test_making_private_before_cdn_copy_lands_still_queues_removal(
        self, mock_get_conn: MagicMock
    ) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record(visibility="public")
        mocks["file_repo"].update_fields.return_value = _make_record(visibility="private")
        mocks["location_repo"].find.return_value = None

        registry.update(FILE_ID, {"visibility": "private"})

        assert _enqueued(mocks["queue"]) == [("delete", None, "cdn", PRIORITY_CRITICAL)]

    @patch("tierstore.registry.registry.get_connection")
    def test_making_public_places_on_cdn(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record(visibility="private")
        mocks["file_repo"].update_fields.return_value = _make_record(visibility="public")
        mocks["location_repo"].find.return_value = None

        registry.update(FILE_ID, {"visibility": "public"})

        assert _enqueued(mocks["queue"]) == [("upload", "local", "cdn", PRIORITY_HIGH)]

    @patch("tierstore.registry.registry.get_connection")
    def test_status_change_writes_history(self, mock_get_conn: MagicMock) -> None:
        conn = _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record()
        mocks["file_repo"].update_fields.return_value = _make_record(document_status="final")

        registry.update(FILE_ID, {"document_status": "final"})

        mocks["file_repo"].insert_status_history.assert_called_once_with(
            conn, FILE_ID, "draft", "final", None, None
        )

    def test_rejects_protected_fields(self) -> None:
        registry, _mocks = _make_registry()

        with pytest.raises(InvalidFileDataError, match="cannot be changed"):
            registry.update(FILE_ID, {"size_bytes": 0})

    @patch("tierstore.registry.registry.get_connection")
    def test_missing_file(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = None

        with pytest.raises(FileRecordNotFoundError):
            registry.update(FILE_ID, {"description": "x"})


class TestApplyClassification:
    def test_merges_tags_and_maps_unknown_category_to_general(self) -> None:
        registry, mocks = _make_registry()
        conn = MagicMock()
        mocks["file_repo"].find_by_id.return_value = _make_record(tags=["budget"])
        mocks["file_repo"].update_fields.side_effect = lambda c, fid, fields, search_text: (
            _make_record(**fields)
        )

        updated = registry.apply_classification(
            conn, FILE_ID, "spreadsheets", "annual", ["Budget", "2024"]
        )

        assert updated.category == "general"
        assert updated.subcategory == "annual"
        assert updated.tags == ["budget", "2024"]


class TestDelete:
    @patch("tierstore.registry.registry.get_connection")
    def test_queues_one_delete_per_tier(self, mock_get_conn: MagicMock) -> None:
        conn = _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record()
        mocks["location_repo"].list_for_file.return_value = [
            FileLocation(file_id=FILE_ID, tier=tier, provider="local", provider_ref="r")
            for tier in ("local", "cloud", "cdn")
        ]

        item_ids = registry.delete(FILE_ID)

        assert item_ids == [100, 101, 102]
        assert _enqueued(mocks["queue"]) == [
            ("delete", None, "local", PRIORITY_NORMAL),
            ("delete", None, "cloud", PRIORITY_NORMAL),
            ("delete", None, "cdn", PRIORITY_NORMAL),
        ]
        mocks["file_repo"].soft_delete.assert_called_once_with(conn, FILE_ID)
        mocks["cache_repo"].delete.assert_called_once_with(conn, FILE_ID)

    def test_malformed_id_is_not_found(self) -> None:
        registry, _mocks = _make_registry()

        with pytest.raises(FileRecordNotFoundError):
            registry.delete("not-a-uuid")

    @patch("tierstore.registry.registry.get_connection")
    def test_purge_removes_archived_versions_of_purged_files_only(
        self, mock_get_conn: MagicMock
    ) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        other_id = "5d0c9a61-8a53-4d2e-b7f4-1f6f0f1a2b3c"
        mocks["version_repo"].archive_refs_of_deleted_files.return_value = {
            FILE_ID: [f"{FILE_ID}/v1/budget.pdf", f"{FILE_ID}/v2/budget.pdf"],
            other_id: [f"{other_id}/v1/letter.pdf"],
        }
        mocks["file_repo"].purge_deleted.return_value = [FILE_ID]
        local = mocks["tiers"].get("local")
        local.delete.side_effect = [True, StorageError("disk gone")]

        assert registry.purge_deleted() == [FILE_ID]

        assert [c.args[0] for c in local.delete.call_args_list] == [
            f"{FILE_ID}/v1/budget.pdf",
            f"{FILE_ID}/v2/budget.pdf",
        ]


class TestSearch:
    @patch("tierstore.registry.registry.get_connection")
    def test_folds_text_and_pages(self, mock_get_conn: MagicMock) -> None:
        conn = _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].search.return_value = ([_make_record()], 1)

        page = registry.search(category="financial", text="Budget", page=2, per_page=10)

        mocks["file_repo"].search.assert_called_once_with(
            conn, "financial", None, "budget", 10, 10
        )
        assert page.total == 1

    @pytest.mark.parametrize(
        "kwargs",
        [{"category": "recipes"}, {"visibility": "secret"}, {"page": 0}, {"per_page": 500}],
    )
    def test_invalid_filters(self, kwargs: dict[str, object]) -> None:
        registry, _mocks = _make_registry()

        with pytest.raises(InvalidSearchError):
            registry.search(**kwargs)  # type: ignore[arg-type]


class TestGetFileUrl:
    def _with_locations(self, mocks: dict[str, MagicMock], tiers: tuple[str, ...]) -> None:
        mocks["location_repo"].list_for_file.return_value = [
            FileLocation(file_id=FILE_ID, tier=tier, provider="local", provider_ref=f"{tier}-ref")
            for tier in tiers
        ]

    @patch("tierstore.registry.registry.get_connection")
    def test_private_file_needs_authentication(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record(visibility="private")

        with pytest.raises(FileAccessDeniedError):
            registry.get_file_url(FILE_ID)

    @patch("tierstore.registry.registry.get_connection")
    def test_prefers_cdn_over_local(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record(visibility="public")
        self._with_locations(mocks, ("local", "cdn"))
        mocks["tiers"].get("cdn").get_url.return_value = "https://cdn.example.org/cdn-ref"

        assert registry.get_file_url(FILE_ID) == "https://cdn.example.org/cdn-ref"
        mocks["tiers"].get("local").get_url.assert_not_called()

    @patch("tierstore.registry.registry.get_connection")
    def test_falls_through_failing_tier(self, mock_get_conn: MagicMock) -> None:
        _mock_connection(mock_get_conn)
        registry, mocks = _make_registry()
        mocks["file_repo"].find_by_id.return_value = _make_record()
        self._with_locations(mocks, ("cloud", "local"))
        mocks["tiers"].get("cloud").get_url.side_effect = StorageError("expired credentials")
        mocks["tiers"].get("local").get_url.return_value = "/files/local-ref"

        assert registry.get_file_url(FILE_ID, authenticated=True) == "/files/local-ref"
