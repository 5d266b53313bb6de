import mimetypes
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from tierstore.storage.base import BaseStorageAdapter
from tierstore.storage.exceptions import StorageError, StorageObjectNotFoundError
from tierstore.storage.models import ObjectMetadata, StorageUsage, UploadResult


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


class LocalStorageAdapter(BaseStorageAdapter):
    """Stores objects as plain files below a root directory.

    Backs the local, cache and collab tiers, and the cloud/CDN tiers in
    development setups without an object store.
    """

    def __init__(
        self,
        root: Path,
        base_url: str = "",
        provider_name: str = "local",
        quota_bytes: int | None = None,
    ) -> None:
        self._root = root
        self._base_url = base_url.rstrip("/")
        self._provider_name = provider_name
        self._quota_bytes = quota_bytes

    @property
    def root(self) -> Path:
        return self._root

    def upload(
        self, source_path: Path, file_ref: str, mime_type: str | None = None
    ) -> UploadResult:
        target = self._resolve(file_ref)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_path, target)
        except OSError as exc:
            raise StorageError(f"Cannot write {file_ref} to {self._root}: {exc}") from exc
        return UploadResult(
            file_ref=file_ref,
            url=self.get_url(file_ref),
            size=target.stat().st_size,
            mime_type=mime_type or guess_mime_type(file_ref),
        )

    def download(self, file_ref: str, dest: Path | None = None) -> Path:
        source = self._resolve(file_ref)
        if not source.is_file():
            raise StorageObjectNotFoundError(f"{file_ref} not found in {self._root}")
        if dest is None:
            dest = make_temp_path(file_ref)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
        except OSError as exc:
            raise StorageError(f"Cannot read {file_ref} from {self._root}: {exc}") from exc
        return dest

    def delete(self, file_ref: str) -> bool:
        target = self._resolve(file_ref)
        if not target.is_file():
            return False
        try:
            target.unlink()
        except OSError as exc:
            raise StorageError(f"Cannot delete {file_ref}: {exc}") from exc
        return True

    def get_url(self, file_ref: str, expires_seconds: int | None = None) -> str | None:
        if not self._base_url:
            return None
        return f"{self._base_url}/{file_ref.lstrip('/')}"

    def exists(self, file_ref: str) -> bool:
        try:
            return self._resolve(file_ref).is_file()
        except (StorageError, OSError):
            return False

    def get_metadata(self, file_ref: str) -> ObjectMetadata:
        target = self._resolve(file_ref)
        if not target.is_file():
            raise StorageObjectNotFoundError(f"{file_ref} not found in {self._root}")
        stat = target.stat()
        return ObjectMetadata(
            size=stat.st_size,
            mime_type=guess_mime_type(file_ref),
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def list_files(self, folder: str = "", recursive: bool = True) -> list[str]:
        base = self._resolve(folder) if folder else self._root
        if not base.is_dir():
            return []
        pattern = "**/*" if recursive else "*"
        return sorted(
            p.relative_to(self._root).as_posix() for p in base.glob(pattern) if p.is_file()
        )

    def get_usage(self) -> StorageUsage:
        if not self._root.is_dir():
            return StorageUsage(used=0, total=self._quota_bytes, count=0)
        sizes = [p.stat().st_size for p in self._root.rglob("*") if p.is_file()]
        total = self._quota_bytes
        if total is None:
            total = shutil.disk_usage(self._root).total
        return StorageUsage(used=sum(sizes), total=total, count=len(sizes))

    def create_folder(self, path: str) -> bool:
        try:
            self._resolve(path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create folder {path}: {exc}") from exc
        return True

    def test_connection(self) -> bool:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            marker = self._root / ".tierstore-marker"
            marker.write_bytes(b"")
            marker.unlink()
        except OSError:
            return False
        return True

    def get_provider_name(self) -> str:
        return self._provider_name

    def _resolve(self, file_ref: str) -> Path:
        root = self._root.resolve()
        target = (root / file_ref.lstrip("/")).resolve()
        if target != root and root not in target.parents:
            raise StorageError(f"Ref {file_ref!r} escapes the storage root")
        return target


def make_temp_path(file_ref: str) -> Path:
    suffix = Path(file_ref).suffix
    handle = tempfile.NamedTemporaryFile(prefix="tierstore-", suffix=suffix, delete=False)
    handle.close()
    return Path(handle.name)


def remove_temp_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
