"""Hot mirror of frequently read files on the cache tier.

Hit and miss counters live on the cache entry. A warm write starts both at
zero, so pre-populating the cache never moves the hit rate; only lookups
through ``get_or_populate`` do.
"""

from dataclasses import dataclass

from tierstore.cache.exceptions import CacheError
from tierstore.database.connection import get_connection
from tierstore.database.models import CacheEntry, FileLocation
from tierstore.database.repositories.cache_repository import CacheRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.logging.logger import Log
from tierstore.registry.exceptions import FileRecordNotFoundError
from tierstore.storage.base import BaseStorageAdapter
from tierstore.storage.exceptions import StorageError
from tierstore.storage.factory import TierRegistry
from tierstore.storage.local_adapter import remove_temp_file
from tierstore.storage.resolver import TierResolver

CACHE_TIER = "cache"


@dataclass(frozen=True)
class CacheLookup:
    entry: CacheEntry
    location: FileLocation
    hit: bool


class CacheService:
    def __init__(
        self,
        *,
        cache_repo: CacheRepository,
        file_repo: FileRepository,
        location_repo: LocationRepository,
        tiers: TierRegistry,
        resolver: TierResolver,
        ttl_seconds: int,
    ) -> None:
        self._cache_repo = cache_repo
        self._file_repo = file_repo
        self._location_repo = location_repo
        self._tiers = tiers
        self._resolver = resolver
        self._ttl_seconds = ttl_seconds

    @property
    def _adapter(self) -> BaseStorageAdapter:
        return self._tiers.get(CACHE_TIER)

    def get_or_populate(self, file_id: str) -> CacheLookup:
        """Serve ``file_id`` from the cache, filling the cache from a colder tier on a miss.

        Raises:
            FileRecordNotFoundError: if the file does not exist.
            CacheError: if no tier can supply the file.
        """
        with get_connection() as conn:
            if self._file_repo.find_by_id(conn, file_id) is None:
                raise FileRecordNotFoundError(f"File {file_id} not found")
            entry = self._cache_repo.record_hit(conn, file_id)
            location = self._location_repo.find(conn, file_id, CACHE_TIER)
            if (
                entry is not None
                and location is not None
                and self._adapter.exists(entry.cache_ref)
            ):
                self._file_repo.record_access(conn, file_id)
                conn.commit()
                Log.debug(f"Cache hit for file {file_id}")
                return CacheLookup(entry=entry, location=location, hit=True)
            conn.rollback()
            # Counted before the refill so a failed refill still shows up as a miss.
            miss_counted = self._cache_repo.record_miss(conn, file_id)
            conn.commit()

        entry, location = self._populate(
            file_id, requested=True, misses=0 if miss_counted else 1
        )
        Log.info(f"Cache miss for file {file_id}, cached {entry.cache_size} bytes")
        return CacheLookup(entry=entry, location=location, hit=False)

    def warm(self, limit: int) -> int:
        """Cache up to ``limit`` of the most used files lacking a live entry. Returns count cached."""
        with get_connection() as conn:
            candidates = self._cache_repo.warm_candidates(conn, limit)
        cached = 0
        for file_id, filename in candidates:
            try:
                self._populate(file_id, requested=False)
            except CacheError as exc:
                Log.warning(f"Could not warm cache for {file_id} ({filename}): {exc}")
                continue
            cached += 1
        Log.info(f"Cache warmed with {cached} of {len(candidates)} candidate files")
        return cached

    def clean_expired(self) -> int:
        """Remove entries whose ``expires_at`` has passed. Returns the number removed."""
        with get_connection() as conn:
            with conn.transaction():
                expired = self._cache_repo.delete_expired(conn)
                for entry in expired:
                    self._location_repo.delete(conn, entry.file_id, CACHE_TIER)
        for entry in expired:
            self._remove_object(entry.cache_ref)
        Log.info(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def clean_lru(self, target_bytes: int) -> int:
        """Evict least recently used entries until the cache holds at most ``target_bytes``.

        Returns the number of entries removed.
        """
        if target_bytes < 0:
            raise ValueError("target_bytes must not be negative")
        with get_connection() as conn:
            with conn.transaction():
                evicted = self._cache_repo.delete_least_recent(conn, target_bytes)
                for entry in evicted:
                    self._location_repo.delete(conn, entry.file_id, CACHE_TIER)
        for entry in evicted:
            self._remove_object(entry.cache_ref)
        if evicted:
            freed = sum(entry.cache_size for entry in evicted)
            Log.info(f"Evicted {len(evicted)} cache entries ({freed} bytes) to fit {target_bytes}")
        return len(evicted)

    def invalidate(self, file_id: str) -> bool:
        with get_connection() as conn:
            with conn.transaction():
                entry = self._cache_repo.delete(conn, file_id)
                self._location_repo.delete(conn, file_id, CACHE_TIER)
        if entry is None:
            return False
        self._remove_object(entry.cache_ref)
        Log.info(f"Invalidated cache entry for file {file_id}")
        return True

    def stats(self) -> dict[str, float]:
        with get_connection() as conn:
            counters = self._cache_repo.stats(conn)
        requests = counters["hits"] + counters["misses"]
        hit_rate = counters["hits"] / requests if requests else 0.0
        return {**counters, "requests": requests, "hit_rate": round(hit_rate, 4)}

    def _populate(
        self, file_id: str, requested: bool, misses: int = 0
    ) -> tuple[CacheEntry, FileLocation]:
        try:
            source, temp_path = self._resolver.fetch(file_id, exclude=(CACHE_TIER,))
        except StorageError as exc:
            raise CacheError(f"No tier could supply file {file_id}: {exc}") from exc
        try:
            stored = self._adapter.upload(temp_path, source.provider_ref)
        except StorageError as exc:
            raise CacheError(f"Cache tier rejected file {file_id}: {exc}") from exc
        finally:
            remove_temp_file(temp_path)

        with get_connection() as conn:
            with conn.transaction():
                entry = self._cache_repo.store(
                    conn,
                    file_id,
                    stored.file_ref,
                    stored.size,
                    self._ttl_seconds,
                    misses=misses,
                    accessed=requested,
                )
                location = self._location_repo.upsert(
                    conn,
                    FileLocation(
                        file_id=file_id,
                        tier=CACHE_TIER,
                        provider=self._adapter.get_provider_name(),
                        provider_ref=stored.file_ref,
                        url=stored.url,
                        size_bytes=stored.size,
                    ),
                )
                if requested:
                    self._file_repo.record_access(conn, file_id)
        return entry, location

    def _remove_object(self, cache_ref: str) -> None:
        try:
            self._adapter.delete(cache_ref)
        except StorageError as exc:
            Log.warning(f"Could not remove cached object {cache_ref}: {exc}")
