"""Admin-facing operations with a uniform success/message result.

Every action catches its own failures so a caller (CLI, web handler) never
sees a stack trace, only ``ActionResult(success=False, message="Error: ...")``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tierstore.cache.cache_service import CacheService
from tierstore.config.settings import Settings
from tierstore.discovery.service import DiscoveryService
from tierstore.logging.logger import Log
from tierstore.registry.models import FileMetadata
from tierstore.registry.registry import FileRegistry
from tierstore.registry.versions import VersionService
from tierstore.sync.queue import SyncQueue


@dataclass
class ActionResult:
    success: bool
    message: str
    data: Any = None


class AdminActions:
    def __init__(
        self,
        *,
        registry: FileRegistry,
        versions: VersionService,
        queue: SyncQueue,
        cache: CacheService,
        discovery: DiscoveryService,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._versions = versions
        self._queue = queue
        self._cache = cache
        self._discovery = discovery
        self._settings = settings

    def list_files(
        self,
        category: str | None = None,
        visibility: str | None = None,
        search: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> ActionResult:
        def action() -> ActionResult:
            result = self._registry.search(category, visibility, search, page, per_page)
            return ActionResult(
                True, f"{result.total} file(s), page {result.page} of {result.pages}", result
            )

        return self._guard("list files", action)

    def upload_file(
        self,
        source_path: Path,
        filename: str | None = None,
        category: str | None = None,
        visibility: str | None = None,
        description: str = "",
        created_by: int | None = None,
        sync_to_collab: bool = False,
    ) -> ActionResult:
        def action() -> ActionResult:
            metadata = FileMetadata(
                filename=filename or source_path.name,
                category=category or None,
                visibility=visibility or None,
                description=description,
                created_by=created_by,
            )
            outcome = self._registry.upload(source_path, metadata, sync_to_collab)
            message = f"File uploaded successfully ({outcome.file_id})"
            if outcome.duplicate_file_ids:
                message += f"; same content as {', '.join(outcome.duplicate_file_ids)}"
            return ActionResult(True, message, outcome)

        return self._guard("upload file", action)

    def update_file(self, file_id: str, changes: dict[str, Any]) -> ActionResult:
        def action() -> ActionResult:
            record = self._registry.update(file_id, changes)
            return ActionResult(True, f"File {file_id} updated", record)

        return self._guard("update file", action)

    def delete_file(self, file_id: str) -> ActionResult:
        def action() -> ActionResult:
            item_ids = self._registry.delete(file_id)
            return ActionResult(
                True,
                f"File {file_id} deleted, {len(item_ids)} tier cleanup job(s) queued",
                item_ids,
            )

        return self._guard("delete file", action)

    def add_version(
        self,
        file_id: str,
        source_path: Path,
        change_description: str = "",
        created_by: int | None = None,
    ) -> ActionResult:
        def action() -> ActionResult:
            version = self._versions.create_version(
                file_id, source_path, change_description, created_by
            )
            return ActionResult(
                True, f"File {file_id} is now at version {version.version_number}", version
            )

        return self._guard("add version", action)

    def list_versions(self, file_id: str) -> ActionResult:
        def action() -> ActionResult:
            versions = self._versions.list_versions(file_id)
            summary = self._versions.history_summary(file_id)
            return ActionResult(
                True,
                f"{len(versions)} version(s), current is v{summary['current_version']}",
                {"items": versions, "summary": summary},
            )

        return self._guard("list versions", action)

    def revert_version(
        self,
        file_id: str,
        version_number: int,
        reason: str = "",
        reverted_by: int | None = None,
    ) -> ActionResult:
        def action() -> ActionResult:
            version = self._versions.revert_to_version(
                file_id, version_number, reason, reverted_by
            )
            return ActionResult(
                True,
                f"Reverted file {file_id} to version {version_number} "
                f"as version {version.version_number}",
                version,
            )

        return self._guard("revert version", action)

    def compare_versions(self, first_id: int, second_id: int) -> ActionResult:
        def action() -> ActionResult:
            comparison = self._versions.compare_versions(first_id, second_id)
            verdict = "identical" if comparison.same_content else "different"
            return ActionResult(
                True,
                f"Versions {first_id} and {second_id} have {verdict} content "
                f"({comparison.size_difference:+d} bytes)",
                comparison,
            )

        return self._guard("compare versions", action)

    def prune_versions(
        self, file_id: str, keep_versions: int = 10, keep_milestones: bool = True
    ) -> ActionResult:
        def action() -> ActionResult:
            count = self._versions.prune_old_versions(file_id, keep_versions, keep_milestones)
            return ActionResult(True, f"Pruned {count} old version(s) of {file_id}", count)

        return self._guard("prune versions", action)

    def queue_status(
        self, status: str = "pending", page: int = 1, per_page: int = 20
    ) -> ActionResult:
        def action() -> ActionResult:
            result = self._queue.list_by_status(status, page, per_page)
            return ActionResult(True, f"{result.total} {status} item(s)", result)

        return self._guard("list sync queue", action)

    def queue_stats(self) -> ActionResult:
        return self._guard(
            "read sync queue stats",
            lambda: ActionResult(True, "Sync queue statistics", self._queue.stats()),
        )

    def retry_item(self, item_id: int) -> ActionResult:
        def action() -> ActionResult:
            new_id = self._queue.retry(item_id)
            return ActionResult(True, f"Item {item_id} re-queued as {new_id}", new_id)

        return self._guard("retry sync item", action)

    def warm_cache(self, limit: int | None = None) -> ActionResult:
        def action() -> ActionResult:
            count = self._cache.warm(limit or self._settings.cache_warm_limit)
            return ActionResult(True, f"Cache warmed: {count} file(s) cached", count)

        return self._guard("warm cache", action)

    def clean_cache(self) -> ActionResult:
        def action() -> ActionResult:
            count = self._cache.clean_expired()
            message = f"Removed {count} expired cache entries"
            if self._settings.cache_max_bytes > 0:
                evicted = self._cache.clean_lru(self._settings.cache_max_bytes)
                message += f", evicted {evicted} to stay under the size limit"
                count += evicted
            return ActionResult(True, message, count)

        return self._guard("clean cache", action)

    def trim_cache(self, target_bytes: int | None = None) -> ActionResult:
        def action() -> ActionResult:
            if target_bytes is None and self._settings.cache_max_bytes <= 0:
                return ActionResult(False, "Error: no cache size limit given or configured")
            target = self._settings.cache_max_bytes if target_bytes is None else target_bytes
            count = self._cache.clean_lru(target)
            return ActionResult(True, f"Evicted {count} cache entries to fit {target} bytes", count)

        return self._guard("trim cache", action)

    def cache_stats(self) -> ActionResult:
        def action() -> ActionResult:
            stats = self._cache.stats()
            return ActionResult(True, f"Cache hit rate {stats['hit_rate']:.1%}", stats)

        return self._guard("read cache stats", action)

    def process_discovery(self, file_id: str) -> ActionResult:
        def action() -> ActionResult:
            record = self._discovery.process(file_id)
            if record.discovery_status == "pending":
                return ActionResult(
                    False, f"Error: {record.error_message or 'discovery failed'}", record
                )
            return ActionResult(
                True,
                f"Discovered {record.discovered_category} "
                f"({self._discovery.band(record)} confidence)",
                record,
            )

        return self._guard("process discovery", action)

    def accept_discovery(self, file_id: str, reviewed_by: int | None = None) -> ActionResult:
        def action() -> ActionResult:
            record = self._discovery.accept(file_id, reviewed_by)
            return ActionResult(True, "Discovery suggestions accepted", record)

        return self._guard("accept discovery", action)

    def reject_discovery(self, file_id: str, reviewed_by: int | None = None) -> ActionResult:
        def action() -> ActionResult:
            record = self._discovery.reject(file_id, reviewed_by)
            return ActionResult(True, "Discovery suggestions rejected", record)

        return self._guard("reject discovery", action)

    def review_list(self, page: int = 1, per_page: int = 20) -> ActionResult:
        def action() -> ActionResult:
            result = self._discovery.list_for_review(page, per_page)
            return ActionResult(True, f"{result.total} record(s) awaiting review", result)

        return self._guard("list discovery reviews", action)

    def discovery_stats(self) -> ActionResult:
        return self._guard(
            "read discovery stats",
            lambda: ActionResult(True, "Discovery statistics", self._discovery.stats()),
        )

    @staticmethod
    def _guard(name: str, action: Callable[[], ActionResult]) -> ActionResult:
        try:
            return action()
        except Exception as exc:
            Log.error(f"Admin action '{name}' failed: {exc}")
            return ActionResult(False, f"Error: {exc}")
