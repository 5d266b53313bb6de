from dataclasses import dataclass

from tierstore.admin.actions import AdminActions
from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.cache.cache_service import CacheService
from tierstore.config.settings import Settings
from tierstore.database.connection import close_pool, init_pool
from tierstore.database.repositories.cache_repository import CacheRepository
from tierstore.database.repositories.discovery_repository import DiscoveryRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.database.repositories.sync_queue_repository import SyncQueueRepository
from tierstore.database.repositories.version_repository import VersionRepository
from tierstore.discovery.service import DiscoveryService, build_discovery_service
from tierstore.logging.logger import Log
from tierstore.registry.registry import FileRegistry
from tierstore.registry.versions import VersionService
from tierstore.storage.factory import TierRegistry
from tierstore.storage.resolver import TierResolver
from tierstore.sync.executor import TierTransferExecutor
from tierstore.sync.queue import SyncQueue
from tierstore.worker.job_runner import SyncJobRunner
from tierstore.worker.worker import Worker


@dataclass
class Services:
    registry: FileRegistry
    versions: VersionService
    queue: SyncQueue
    cache: CacheService
    discovery: DiscoveryService
    actions: AdminActions
    worker: Worker


def build_services(
    settings: Settings,
    tiers: TierRegistry | None = None,
    analyzer: BaseDocumentAnalyzer | None = None,
) -> Services:
    """Wire repositories, adapters and services from settings."""
    tiers = tiers or TierRegistry.from_settings(settings)
    file_repo = FileRepository()
    location_repo = LocationRepository()
    discovery_repo = DiscoveryRepository()
    cache_repo = CacheRepository()
    version_repo = VersionRepository()
    queue_repo = SyncQueueRepository(settings.max_sync_attempts)
    queue = SyncQueue(queue_repo)
    resolver = TierResolver(tiers, location_repo)

    registry = FileRegistry(
        file_repo=file_repo,
        location_repo=location_repo,
        discovery_repo=discovery_repo,
        cache_repo=cache_repo,
        version_repo=version_repo,
        queue=queue,
        tiers=tiers,
    )
    versions = VersionService(
        file_repo=file_repo,
        version_repo=version_repo,
        location_repo=location_repo,
        cache_repo=cache_repo,
        queue=queue,
        tiers=tiers,
    )
    cache = CacheService(
        cache_repo=cache_repo,
        file_repo=file_repo,
        location_repo=location_repo,
        tiers=tiers,
        resolver=resolver,
        ttl_seconds=settings.cache_ttl_seconds,
    )
    discovery = build_discovery_service(
        settings,
        registry=registry,
        file_repo=file_repo,
        resolver=resolver,
        discovery_repo=discovery_repo,
        analyzer=analyzer,
    )
    executor = TierTransferExecutor(tiers, location_repo, file_repo, queue_repo)
    job_runner = SyncJobRunner(executor, queue)
    worker = Worker(queue, job_runner, discovery, settings)
    actions = AdminActions(
        registry=registry,
        versions=versions,
        queue=queue,
        cache=cache,
        discovery=discovery,
        settings=settings,
    )
    return Services(
        registry=registry,
        versions=versions,
        queue=queue,
        cache=cache,
        discovery=discovery,
        actions=actions,
        worker=worker,
    )


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        services = build_services(settings)
        services.worker.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
