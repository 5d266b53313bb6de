from pathlib import Path

from tierstore.database.connection import get_connection
from tierstore.database.models import FileLocation
from tierstore.database.repositories.location_repository import LocationRepository
from tierstore.logging.logger import Log
from tierstore.storage.exceptions import StorageError, StorageObjectNotFoundError
from tierstore.storage.factory import TierRegistry
from tierstore.sync.constants import SERVING_ORDER


class TierResolver:
    """Reads a file back from whichever tier currently holds a good copy."""

    def __init__(self, tiers: TierRegistry, location_repo: LocationRepository) -> None:
        self._tiers = tiers
        self._location_repo = location_repo

    def fetch(
        self,
        file_id: str,
        exclude: tuple[str, ...] = (),
        dest: Path | None = None,
    ) -> tuple[FileLocation, Path]:
        """Download ``file_id`` from the first tier in serving order that succeeds.

        Raises:
            StorageObjectNotFoundError: if no enabled tier could produce the file.
        """
        with get_connection() as conn:
            locations = self._location_repo.list_for_file(conn, file_id)
        by_tier = {loc.tier: loc for loc in locations if loc.sync_status == "synced"}

        errors: list[str] = []
        for tier in SERVING_ORDER:
            location = by_tier.get(tier)
            if location is None or tier in exclude or not self._tiers.is_enabled(tier):
                continue
            try:
                path = self._tiers.get(tier).download(location.provider_ref, dest)
            except StorageError as exc:
                Log.warning(f"Tier {tier} could not serve file {file_id}: {exc}")
                errors.append(f"{tier}: {exc}")
                continue
            return location, path

        detail = "; ".join(errors) if errors else "no synced location"
        raise StorageObjectNotFoundError(f"File {file_id} unavailable on any tier ({detail})")
