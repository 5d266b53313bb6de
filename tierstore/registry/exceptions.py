class RegistryError(Exception):
    """Base exception for file registry errors."""


class FileRecordNotFoundError(RegistryError):
    """Raised when a file record does not exist or has been deleted."""


class InvalidFileDataError(RegistryError):
    """Raised when file metadata fails validation."""


class InvalidSearchError(RegistryError):
    """Raised when search filters or pagination arguments are invalid."""


class FileAccessDeniedError(RegistryError):
    """Raised when a private file is requested without authentication."""


class VersionNotFoundError(RegistryError):
    """Raised when a file version does not exist or has been pruned."""
