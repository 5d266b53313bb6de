from abc import ABC, abstractmethod
from pathlib import Path

from tierstore.storage.models import ObjectMetadata, StorageUsage, UploadResult


class BaseStorageAdapter(ABC):
    """Contract for all tier storage adapters.

    Adapters hold no state besides their connection settings. Backend
    failures are raised as ``StorageError`` subclasses, never as the
    provider's own exception types.
    """

    @abstractmethod
    def upload(
        self, source_path: Path, file_ref: str, mime_type: str | None = None
    ) -> UploadResult:
        """Store the file at ``source_path`` under ``file_ref``.

        Raises:
            StorageError: if the object could not be written.
        """

    @abstractmethod
    def download(self, file_ref: str, dest: Path | None = None) -> Path:
        """Fetch ``file_ref`` to ``dest`` (or a temporary file) and return its path.

        Raises:
            StorageObjectNotFoundError: if the object does not exist.
            StorageError: for any other backend failure.
        """

    @abstractmethod
    def delete(self, file_ref: str) -> bool:
        """Remove ``file_ref``. Returns False when there was nothing to remove."""

    @abstractmethod
    def get_url(self, file_ref: str, expires_seconds: int | None = None) -> str | None:
        """Return a URL the object can be fetched from, or None if the tier is not web-facing."""

    @abstractmethod
    def exists(self, file_ref: str) -> bool:
        """Report whether ``file_ref`` exists. Must never raise."""

    @abstractmethod
    def get_metadata(self, file_ref: str) -> ObjectMetadata:
        """Raises StorageObjectNotFoundError if the object does not exist."""

    @abstractmethod
    def list_files(self, folder: str = "", recursive: bool = True) -> list[str]:
        """Return the refs stored under ``folder``."""

    @abstractmethod
    def get_usage(self) -> StorageUsage:
        pass

    @abstractmethod
    def create_folder(self, path: str) -> bool:
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Return True when the backend is reachable and writable. Must never raise."""

    @abstractmethod
    def get_provider_name(self) -> str:
        pass
