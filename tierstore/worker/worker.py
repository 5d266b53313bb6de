import time

from tierstore.config.settings import Settings
from tierstore.database.models import SyncQueueItem
from tierstore.discovery.service import DiscoveryService
from tierstore.logging.logger import Log
from tierstore.sync.queue import SyncQueue
from tierstore.worker.job_runner import SyncJobRunner


class Worker:
    """Poll loop: recover stale claims -> claim -> dispatch -> sleep when idle.

    Sync items always win over discovery; a discovery batch only runs when
    the sync queue had nothing pending.
    """

    def __init__(
        self,
        queue: SyncQueue,
        job_runner: SyncJobRunner,
        discovery: DiscoveryService | None,
        settings: Settings,
    ) -> None:
        self._queue = queue
        self._job_runner = job_runner
        self._discovery = discovery
        self._settings = settings

    def run(self, max_items: int | None = None) -> None:
        """Main poll loop. Runs forever until interrupted.

        If max_items is set, stop after handling that many sync items and
        discovery records (for testing).
        """
        Log.info("Worker started, polling for sync items")
        items_done = 0
        try:
            while True:
                if max_items is not None and items_done >= max_items:
                    break
                self._recover_stale()
                item = self._try_claim_item()
                if item:
                    self._job_runner.run(item)
                    items_done += 1
                    continue
                processed = self._try_discovery_batch()
                if processed:
                    items_done += processed
                    continue
                Log.debug("No work available, sleeping")
                time.sleep(self._settings.sync_poll_interval_seconds)
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")

    def _recover_stale(self) -> None:
        try:
            self._queue.requeue_stale(self._settings.sync_claim_timeout_seconds)
            if self._discovery is not None:
                self._discovery.requeue_stale(self._settings.discovery_claim_timeout_seconds)
        except Exception as exc:
            Log.warning(f"Stale claim recovery failed, will retry: {exc}")

    def _try_claim_item(self) -> SyncQueueItem | None:
        """Attempt to claim the next pending item. Gracefully handle DB errors."""
        try:
            return self._queue.dequeue_next()
        except Exception as exc:
            Log.warning(f"Database error, will retry: {exc}")
            return None

    def _try_discovery_batch(self) -> int:
        if self._discovery is None:
            return 0
        try:
            return len(self._discovery.process_batch(self._settings.discovery_batch_size))
        except Exception as exc:
            Log.warning(f"Discovery batch failed, will retry: {exc}")
            return 0
