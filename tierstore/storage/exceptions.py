class StorageError(Exception):
    """Base exception for all tier storage errors."""


class StorageNetworkError(StorageError):
    """Raised when a storage backend cannot be reached or rejects the credentials."""


class StorageObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist on the tier."""


class UnknownTierError(StorageError):
    """Raised when a tier name is not one of the known tiers."""


class TierUnavailableError(StorageError):
    """Raised when a tier is known but not configured in this deployment."""
