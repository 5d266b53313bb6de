from datetime import timedelta
from pathlib import Path

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from tierstore.logging.logger import Log
from tierstore.storage.base import BaseStorageAdapter
from tierstore.storage.exceptions import (
    StorageError,
    StorageNetworkError,
    StorageObjectNotFoundError,
)
from tierstore.storage.local_adapter import guess_mime_type, make_temp_path
from tierstore.storage.models import ObjectMetadata, StorageUsage, UploadResult

_MISSING_CODES = frozenset({"NoSuchKey", "NoSuchObject"})
_AUTH_CODES = frozenset({"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"})


def _translate(exc: Exception, action: str, file_ref: str) -> StorageError:
    if isinstance(exc, S3Error):
        if exc.code in _MISSING_CODES:
            return StorageObjectNotFoundError(f"{file_ref} not found")
        if exc.code in _AUTH_CODES:
            return StorageNetworkError(f"{action} {file_ref} rejected: {exc.code}")
        return StorageError(f"{action} {file_ref} failed: {exc.code}")
    return StorageNetworkError(f"{action} {file_ref} failed: {exc}")


class MinioStorageAdapter(BaseStorageAdapter):
    """Stores objects in a MinIO/S3-compatible bucket.

    Used for the cloud tier and, with a public base URL, for the CDN tier.
    When ``public_base_url`` is empty, ``get_url`` hands out presigned GET
    URLs instead.
    """

    def __init__(
        self,
        client: Minio,
        bucket: str,
        provider_name: str = "minio",
        public_base_url: str = "",
        presigned_expiry_seconds: int = 3600,
        quota_bytes: int | None = None,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._provider_name = provider_name
        self._public_base_url = public_base_url.rstrip("/")
        self._presigned_expiry_seconds = presigned_expiry_seconds
        self._quota_bytes = quota_bytes

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(
        self, source_path: Path, file_ref: str, mime_type: str | None = None
    ) -> UploadResult:
        content_type = mime_type or guess_mime_type(file_ref)
        try:
            self._client.fput_object(
                self._bucket, file_ref, str(source_path), content_type=content_type
            )
        except (S3Error, HTTPError, OSError) as exc:
            raise _translate(exc, "upload", file_ref) from exc
        Log.debug(f"Uploaded {file_ref} to bucket {self._bucket}")
        return UploadResult(
            file_ref=file_ref,
            url=self.get_url(file_ref),
            size=source_path.stat().st_size,
            mime_type=content_type,
        )

    def download(self, file_ref: str, dest: Path | None = None) -> Path:
        if dest is None:
            dest = make_temp_path(file_ref)
        try:
            self._client.fget_object(self._bucket, file_ref, str(dest))
        except (S3Error, HTTPError, OSError) as exc:
            raise _translate(exc, "download", file_ref) from exc
        return dest

    def delete(self, file_ref: str) -> bool:
        if not self.exists(file_ref):
            return False
        try:
            self._client.remove_object(self._bucket, file_ref)
        except (S3Error, HTTPError) as exc:
            raise _translate(exc, "delete", file_ref) from exc
        return True

    def get_url(self, file_ref: str, expires_seconds: int | None = None) -> str | None:
        if self._public_base_url:
            return f"{self._public_base_url}/{file_ref.lstrip('/')}"
        expires = expires_seconds or self._presigned_expiry_seconds
        try:
            return self._client.presigned_get_object(
                self._bucket, file_ref, expires=timedelta(seconds=expires)
            )
        except (S3Error, HTTPError) as exc:
            raise _translate(exc, "presign", file_ref) from exc

    def exists(self, file_ref: str) -> bool:
        try:
            self._client.stat_object(self._bucket, file_ref)
        except (S3Error, HTTPError, ValueError):
            return False
        return True

    def get_metadata(self, file_ref: str) -> ObjectMetadata:
        try:
            stat = self._client.stat_object(self._bucket, file_ref)
        except (S3Error, HTTPError) as exc:
            raise _translate(exc, "stat", file_ref) from exc
        return ObjectMetadata(
            size=stat.size or 0,
            mime_type=stat.content_type or guess_mime_type(file_ref),
            modified=stat.last_modified,
        )

    def list_files(self, folder: str = "", recursive: bool = True) -> list[str]:
        prefix = folder.strip("/")
        if prefix:
            prefix += "/"
        try:
            return [
                obj.object_name
                for obj in self._client.list_objects(
                    self._bucket, prefix=prefix, recursive=recursive
                )
                if not obj.is_dir and obj.object_name
            ]
        except (S3Error, HTTPError) as exc:
            raise _translate(exc, "list", folder) from exc

    def get_usage(self) -> StorageUsage:
        used = 0
        count = 0
        try:
            for obj in self._client.list_objects(self._bucket, recursive=True):
                used += obj.size or 0
                count += 1
        except (S3Error, HTTPError) as exc:
            raise _translate(exc, "usage", self._bucket) from exc
        return StorageUsage(used=used, total=self._quota_bytes, count=count)

    def create_folder(self, path: str) -> bool:
        # Object stores have no directories; prefixes appear once an object is written.
        return True

    def test_connection(self) -> bool:
        try:
            if not self._client.bucket_exists(self._bucket):
                self._client.make_bucket(self._bucket)
        except (S3Error, HTTPError) as exc:
            Log.warning(f"Bucket {self._bucket} unreachable: {exc}")
            return False
        return True

    def get_provider_name(self) -> str:
        return self._provider_name
