class CacheError(Exception):
    """Raised when the cache tier cannot serve or store a file."""
