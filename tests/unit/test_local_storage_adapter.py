from pathlib import Path

import pytest

from tierstore.storage.exceptions import StorageError, StorageObjectNotFoundError
from tierstore.storage.local_adapter import (
    LocalStorageAdapter,
    guess_mime_type,
    remove_temp_file,
)


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "incoming" / "budget.pdf"
    path.parent.mkdir()
    path.write_bytes(b"%PDF-1.4 fake budget")
    return path


@pytest.fixture
def adapter(tmp_path: Path) -> LocalStorageAdapter:
    return LocalStorageAdapter(tmp_path / "store", base_url="https://files.example.org/")


class TestUpload:
    def test_copies_file_under_root(
        self, adapter: LocalStorageAdapter, source_file: Path
    ) -> None:
        result = adapter.upload(source_file, "abc/budget.pdf")

        stored = adapter.root / "abc" / "budget.pdf"
        assert stored.read_bytes() == b"%PDF-1.4 fake budget"
        assert result.file_ref == "abc/budget.pdf"
        assert result.size == len(b"%PDF-1.4 fake budget")
        assert result.mime_type == "application/pdf"
        assert result.url == "https://files.example.org/abc/budget.pdf"

    def test_uses_given_mime_type(self, adapter: LocalStorageAdapter, source_file: Path) -> None:
        result = adapter.upload(source_file, "abc/budget.bin", mime_type="application/pdf")
        assert result.mime_type == "application/pdf"

    def test_rejects_ref_outside_root(
        self, adapter: LocalStorageAdapter, source_file: Path
    ) -> None:
        with pytest.raises(StorageError, match="escapes the storage root"):
            adapter.upload(source_file, "../../etc/passwd")


class TestDownload:
    def test_copies_to_destination(
        self, adapter: LocalStorageAdapter, source_file: Path, tmp_path: Path
    ) -> None:
        adapter.upload(source_file, "abc/budget.pdf")
        dest = tmp_path / "out" / "copy.pdf"

        path = adapter.download("abc/budget.pdf", dest)

        assert path == dest
        assert dest.read_bytes() == source_file.read_bytes()

    def test_creates_temp_file_without_destination(
        self, adapter: LocalStorageAdapter, source_file: Path
    ) -> None:
        adapter.upload(source_file, "abc/budget.pdf")

        path = adapter.download("abc/budget.pdf")
        try:
            assert path.suffix == ".pdf"
            assert path.read_bytes() == source_file.read_bytes()
        finally:
            remove_temp_file(path)
        assert not path.exists()

    def test_missing_object_raises(self, adapter: LocalStorageAdapter) -> None:
        with pytest.raises(StorageObjectNotFoundError):
            adapter.download("nope/missing.pdf")


class TestDeleteAndExists:
    def test_delete_existing(self, adapter: LocalStorageAdapter, source_file: Path) -> None:
        adapter.upload(source_file, "abc/budget.pdf")

        assert adapter.delete("abc/budget.pdf") is True
        assert adapter.exists("abc/budget.pdf") is False

    def test_delete_missing_returns_false(self, adapter: LocalStorageAdapter) -> None:
        assert adapter.delete("abc/none.pdf") is False

    def test_exists_never_raises_on_bad_ref(self, adapter: LocalStorageAdapter) -> None:
        assert adapter.exists("../../outside") is False


class TestMetadataAndListing:
    def test_get_metadata(self, adapter: LocalStorageAdapter, source_file: Path) -> None:
        adapter.upload(source_file, "abc/budget.pdf")

        meta = adapter.get_metadata("abc/budget.pdf")

        assert meta.size == source_file.stat().st_size
        assert meta.mime_type == "application/pdf"
        assert meta.modified is not None

    def test_get_metadata_missing_raises(self, adapter: LocalStorageAdapter) -> None:
        with pytest.raises(StorageObjectNotFoundError):
            adapter.get_metadata("missing.txt")

    def test_list_files_recursive_and_flat(
        self, adapter: LocalStorageAdapter, source_file: Path
    ) -> None:
        adapter.upload(source_file, "a/one.pdf")
        adapter.upload(source_file, "a/b/two.pdf")
        adapter.upload(source_file, "three.pdf")

        assert adapter.list_files() == ["a/b/two.pdf", "a/one.pdf", "three.pdf"]
        assert adapter.list_files("a", recursive=False) == ["a/one.pdf"]
        assert adapter.list_files("missing") == []

    def test_get_usage_with_quota(self, tmp_path: Path, source_file: Path) -> None:
        adapter = LocalStorageAdapter(tmp_path / "q", quota_bytes=1000)
        adapter.upload(source_file, "x.pdf")
        adapter.upload(source_file, "y.pdf")

        usage = adapter.get_usage()

        assert usage.count == 2
        assert usage.used == 2 * source_file.stat().st_size
        assert usage.total == 1000

    def test_get_usage_empty_root(self, tmp_path: Path) -> None:
        usage = LocalStorageAdapter(tmp_path / "never-created", quota_bytes=5).get_usage()
        assert (usage.used, usage.total, usage.count) == (0, 5, 0)


class TestProviderContract:
    def test_get_url_without_base_url(self, tmp_path: Path) -> None:
        assert LocalStorageAdapter(tmp_path).get_url("a.pdf") is None

    def test_create_folder(self, adapter: LocalStorageAdapter) -> None:
        assert adapter.create_folder("reports/2024") is True
        assert (adapter.root / "reports" / "2024").is_dir()

    def test_test_connection_creates_root(self, adapter: LocalStorageAdapter) -> None:
        assert adapter.test_connection() is True
        assert adapter.root.is_dir()

    def test_provider_name(self, tmp_path: Path) -> None:
        assert LocalStorageAdapter(tmp_path, provider_name="cache").get_provider_name() == "cache"


class TestGuessMimeType:
    def test_known_extension(self) -> None:
        assert guess_mime_type("notes.txt") == "text/plain"

    def test_unknown_extension(self) -> None:
        assert guess_mime_type("blob.zzzunknown") == "application/octet-stream"
