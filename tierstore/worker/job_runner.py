from tierstore.database.models import SyncQueueItem
from tierstore.logging.logger import Log
from tierstore.sync.executor import TierTransferExecutor
from tierstore.sync.queue import SyncQueue


class SyncJobRunner:
    """Run one sync item, catch exceptions, and report the outcome to the queue."""

    def __init__(self, executor: TierTransferExecutor, queue: SyncQueue) -> None:
        self._executor = executor
        self._queue = queue

    def run(self, item: SyncQueueItem) -> None:
        """Execute a single item with error handling."""
        Log.info(f"Running sync item {item.id} (attempt {item.attempts + 1})")
        try:
            outcome = self._executor.execute(item)
            self._queue.complete(item.id)
            Log.info(f"Sync item {item.id}: {outcome}")
        except Exception as exc:
            self._handle_failure(item, exc)

    def _handle_failure(self, item: SyncQueueItem, exc: Exception) -> None:
        """The queue decides between retry and terminal failure."""
        Log.error(f"Sync item {item.id} failed: {exc}")
        self._queue.fail(item.id, str(exc) or exc.__class__.__name__)
