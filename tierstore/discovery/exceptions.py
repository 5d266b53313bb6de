class DiscoveryError(Exception):
    """Base exception for the discovery pipeline."""


class DiscoveryNotFoundError(DiscoveryError):
    """Raised when a file has no discovery record."""


class InvalidReviewTransitionError(DiscoveryError):
    """Raised when accept/reject is attempted on a record that is not awaiting a decision."""
