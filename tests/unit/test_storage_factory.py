from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tierstore.config.settings import Settings
from tierstore.storage.exceptions import TierUnavailableError, UnknownTierError
from tierstore.storage.factory import StorageAdapterFactory, TierRegistry
from tierstore.storage.local_adapter import LocalStorageAdapter
from tierstore.storage.minio_adapter import MinioStorageAdapter


def _settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {
        "storage_local_root": str(tmp_path / "local"),
        "storage_cache_root": str(tmp_path / "cache"),
        "storage_collab_root": str(tmp_path / "collab"),
        "storage_cloud_root": str(tmp_path / "cloud"),
        "storage_cdn_root": str(tmp_path / "cdn"),
    }
    values.update(overrides)
    return Settings(**values)


class TestStorageAdapterFactory:
    def test_filesystem_tiers(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)

        local = StorageAdapterFactory.create("local", settings)
        cache = StorageAdapterFactory.create("cache", settings)

        assert isinstance(local, LocalStorageAdapter)
        assert local.root == tmp_path / "local"
        assert isinstance(cache, LocalStorageAdapter)
        assert cache.get_provider_name() == "cache"

    def test_cdn_disabled(self, tmp_path: Path) -> None:
        assert StorageAdapterFactory.create("cdn", _settings(tmp_path)) is None

    @patch("tierstore.storage.factory.Minio")
    def test_minio_cloud(self, mock_minio: MagicMock, tmp_path: Path) -> None:
        settings = _settings(
            tmp_path,
            storage_cloud_provider="minio",
            minio_endpoint="minio:9000",
            minio_cloud_bucket="org-files",
        )

        adapter = StorageAdapterFactory.create("cloud", settings)

        assert isinstance(adapter, MinioStorageAdapter)
        assert adapter.bucket == "org-files"
        assert mock_minio.call_args.args == ("minio:9000",)

    def test_unknown_cloud_provider(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unknown cloud provider"):
            StorageAdapterFactory.create("cloud", _settings(tmp_path, storage_cloud_provider="ftp"))

    def test_unknown_tier(self, tmp_path: Path) -> None:
        with pytest.raises(UnknownTierError):
            StorageAdapterFactory.create("tape", _settings(tmp_path))


class TestTierRegistry:
    def test_from_settings_skips_disabled_cdn(self, tmp_path: Path) -> None:
        registry = TierRegistry.from_settings(_settings(tmp_path))

        assert registry.enabled_tiers() == ["cloud", "cache", "local", "collab"]
        assert registry.is_enabled("cdn") is False

    def test_get_disabled_tier(self, tmp_path: Path) -> None:
        registry = TierRegistry.from_settings(_settings(tmp_path))
        with pytest.raises(TierUnavailableError):
            registry.get("cdn")

    def test_get_unknown_tier(self) -> None:
        with pytest.raises(UnknownTierError):
            TierRegistry({}).get("floppy")

    def test_rejects_unknown_adapter_key(self) -> None:
        with pytest.raises(UnknownTierError):
            TierRegistry({"floppy": MagicMock()})
