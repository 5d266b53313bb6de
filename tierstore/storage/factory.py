from pathlib import Path

from minio import Minio

from tierstore.config.settings import Settings
from tierstore.storage.base import BaseStorageAdapter
from tierstore.storage.exceptions import TierUnavailableError, UnknownTierError
from tierstore.storage.local_adapter import LocalStorageAdapter
from tierstore.storage.minio_adapter import MinioStorageAdapter
from tierstore.sync.constants import TIERS


class StorageAdapterFactory:
    """Creates the storage adapter for a tier based on settings.

    Returns None for a tier that is switched off (only the CDN tier can be).
    """

    CLOUD_PROVIDERS: tuple[str, ...] = ("local", "minio")
    CDN_PROVIDERS: tuple[str, ...] = ("none", "local", "minio")

    @classmethod
    def create(cls, tier: str, settings: Settings) -> BaseStorageAdapter | None:
        if tier not in TIERS:
            raise UnknownTierError(f"Unknown tier '{tier}'. Choose from: {list(TIERS)}")
        if tier == "local":
            return LocalStorageAdapter(
                Path(settings.storage_local_root), base_url=settings.storage_local_base_url
            )
        if tier == "cache":
            return LocalStorageAdapter(Path(settings.storage_cache_root), provider_name="cache")
        if tier == "collab":
            return LocalStorageAdapter(Path(settings.storage_collab_root), provider_name="collab")
        if tier == "cloud":
            return cls._create_cloud(settings)
        return cls._create_cdn(settings)

    @classmethod
    def _create_cloud(cls, settings: Settings) -> BaseStorageAdapter:
        provider = settings.storage_cloud_provider.lower()
        if provider == "local":
            return LocalStorageAdapter(Path(settings.storage_cloud_root), provider_name="local")
        if provider == "minio":
            return MinioStorageAdapter(
                cls._minio_client(settings),
                settings.minio_cloud_bucket,
                presigned_expiry_seconds=settings.minio_presigned_expiry_seconds,
                quota_bytes=settings.minio_quota_bytes or None,
            )
        raise ValueError(
            f"Unknown cloud provider '{provider}'. Choose from: {list(cls.CLOUD_PROVIDERS)}"
        )

    @classmethod
    def _create_cdn(cls, settings: Settings) -> BaseStorageAdapter | None:
        provider = settings.storage_cdn_provider.lower()
        if provider == "none":
            return None
        if provider == "local":
            return LocalStorageAdapter(
                Path(settings.storage_cdn_root),
                base_url=settings.cdn_base_url,
                provider_name="local",
            )
        if provider == "minio":
            return MinioStorageAdapter(
                cls._minio_client(settings),
                settings.minio_cdn_bucket,
                provider_name="minio-cdn",
                public_base_url=settings.cdn_base_url,
                presigned_expiry_seconds=settings.minio_presigned_expiry_seconds,
            )
        raise ValueError(
            f"Unknown CDN provider '{provider}'. Choose from: {list(cls.CDN_PROVIDERS)}"
        )

    @staticmethod
    def _minio_client(settings: Settings) -> Minio:
        return Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )


class TierRegistry:
    """Maps tier names to their adapters for one deployment."""

    def __init__(self, adapters: dict[str, BaseStorageAdapter]) -> None:
        for tier in adapters:
            if tier not in TIERS:
                raise UnknownTierError(f"Unknown tier '{tier}'")
        self._adapters = dict(adapters)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TierRegistry":
        adapters: dict[str, BaseStorageAdapter] = {}
        for tier in TIERS:
            adapter = StorageAdapterFactory.create(tier, settings)
            if adapter is not None:
                adapters[tier] = adapter
        return cls(adapters)

    def get(self, tier: str) -> BaseStorageAdapter:
        if tier not in TIERS:
            raise UnknownTierError(f"Unknown tier '{tier}'")
        adapter = self._adapters.get(tier)
        if adapter is None:
            raise TierUnavailableError(f"Tier '{tier}' is not configured")
        return adapter

    def is_enabled(self, tier: str) -> bool:
        return tier in self._adapters

    def enabled_tiers(self) -> list[str]:
        """Enabled tiers in canonical order."""
        return [t for t in TIERS if t in self._adapters]
