class SyncQueueError(Exception):
    """Base exception for sync queue errors."""


class QueueItemNotFoundError(SyncQueueError):
    """Raised when a queue item id does not exist."""


class InvalidQueueOperationError(SyncQueueError):
    """Raised when an item is enqueued with bad arguments or retried from the wrong state."""
