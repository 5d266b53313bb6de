import json
import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from tierstore.admin.actions import ActionResult
from tierstore.cli import ACTION_ERROR_EXIT_CODE, SUCCESS_EXIT_CODE, app
from tierstore.database.models import FileVersion, SyncQueueItem
from tierstore.database.pagination import Page

FILE_ID = "0b7e7dc2-5bd6-4a3b-9d55-3c1f0d3e9a10"

runner = CliRunner()


@pytest.fixture(autouse=True)
def _detach_log_handlers() -> Iterator[None]:
    """The CLI binds its log handler to the runner stream, which closes after each invoke."""
    yield
    logger = logging.getLogger("tierstore")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def services() -> Iterator[MagicMock]:
    mock_services = MagicMock()
    with (
        patch("tierstore.cli.init_pool"),
        patch("tierstore.cli.close_pool"),
        patch("tierstore.cli.build_services", return_value=mock_services),
    ):
        yield mock_services


class TestCommands:
    def test_delete_success(self, services: MagicMock) -> None:
        services.actions.delete_file.return_value = ActionResult(
            True, f"File {FILE_ID} deleted, 2 tier cleanup job(s) queued", [1, 2]
        )

        result = runner.invoke(app, ["delete", FILE_ID])

        assert result.exit_code == SUCCESS_EXIT_CODE
        assert "2 tier cleanup job(s) queued" in result.output
        services.actions.delete_file.assert_called_once_with(FILE_ID)

    def test_failed_action_exits_non_zero(self, services: MagicMock) -> None:
        services.actions.retry_item.return_value = ActionResult(
            False, "Error: Only failed items can be retried; item 4 is pending"
        )

        result = runner.invoke(app, ["retry", "4"])

        assert result.exit_code == ACTION_ERROR_EXIT_CODE
        assert "Only failed items" in result.output

    def test_upload_passes_options(self, services: MagicMock, tmp_path: Path) -> None:
        source = tmp_path / "budget.pdf"
        source.write_bytes(b"%PDF-1.4")
        services.actions.upload_file.return_value = ActionResult(True, "File uploaded successfully")

        result = runner.invoke(
            app,
            [
                "upload",
                str(source),
                "--category",
                "financial",
                "--visibility",
                "public",
                "--collab",
            ],
        )

        assert result.exit_code == SUCCESS_EXIT_CODE
        call = services.actions.upload_file.call_args
        assert call.args[0] == source
        assert call.kwargs["category"] == "financial"
        assert call.kwargs["visibility"] == "public"
        assert call.kwargs["sync_to_collab"] is True

    def test_upload_missing_file_is_a_usage_error(
        self, services: MagicMock, tmp_path: Path
    ) -> None:
        result = runner.invoke(app, ["upload", str(tmp_path / "missing.pdf")])

        assert result.exit_code == 2
        services.actions.upload_file.assert_not_called()

    def test_queue_lists_items(self, services: MagicMock) -> None:
        item = SyncQueueItem(
            id=3,
            file_id=FILE_ID,
            operation="upload",
            from_tier="local",
            to_tier="cdn",
            priority=5,
            status="pending",
            attempts=1,
            error_message="timeout",
        )
        services.actions.queue_status.return_value = ActionResult(
            True, "1 pending item(s)", Page(items=[item], total=1)
        )

        result = runner.invoke(app, ["queue", "--status", "pending"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        assert "#3  upload local->cdn  p5  attempts=1  error=timeout" in result.output
        services.actions.queue_status.assert_called_once_with("pending", 1, 20)

    def test_queue_stats(self, services: MagicMock) -> None:
        services.actions.queue_stats.return_value = ActionResult(
            True, "Sync queue statistics", {"pending": 2, "total": 2}
        )

        result = runner.invoke(app, ["queue", "--stats"])

        assert "pending: 2" in result.output
        services.actions.queue_status.assert_not_called()

    def test_json_output(self, services: MagicMock) -> None:
        services.actions.cache_stats.return_value = ActionResult(
            True, "Cache hit rate 0.0%", {"hits": 0, "misses": 0, "hit_rate": 0.0}
        )

        result = runner.invoke(app, ["--json", "cache-stats"])

        payload = json.loads(result.output)
        assert payload["success"] is True
        assert payload["data"]["hit_rate"] == 0.0

    def test_accept_with_reviewer(self, services: MagicMock) -> None:
        services.actions.accept_discovery.return_value = ActionResult(
            True, "Discovery suggestions accepted"
        )

        result = runner.invoke(app, ["accept", FILE_ID, "--reviewed-by", "7"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        services.actions.accept_discovery.assert_called_once_with(FILE_ID, 7)

    def test_worker_runs_bounded_loop(self, services: MagicMock) -> None:
        result = runner.invoke(app, ["worker", "--max-items", "3"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        services.worker.run.assert_called_once_with(max_items=3)

    def test_versions_lists_newest_first(self, services: MagicMock) -> None:
        versions = [
            FileVersion(
                id=12,
                file_id=FILE_ID,
                version_number=2,
                size_bytes=20,
                checksum_sha256="b",
                archive_ref=f"{FILE_ID}/v2/budget.pdf",
                change_description="fixed totals",
                is_current=True,
            ),
            FileVersion(
                id=11,
                file_id=FILE_ID,
                version_number=1,
                size_bytes=15,
                checksum_sha256="a",
                archive_ref=f"{FILE_ID}/v1/budget.pdf",
            ),
        ]
        services.actions.list_versions.return_value = ActionResult(
            True, "2 version(s), current is v2", {"items": versions, "summary": {}}
        )

        result = runner.invoke(app, ["versions", FILE_ID])

        assert result.exit_code == SUCCESS_EXIT_CODE
        lines = result.output.splitlines()
        assert "- v2  #12  20 bytes  current  fixed totals" in lines
        assert "- v1  #11  15 bytes" in lines

    def test_revert_passes_reason(self, services: MagicMock) -> None:
        services.actions.revert_version.return_value = ActionResult(True, "Reverted")

        result = runner.invoke(app, ["revert", FILE_ID, "1", "--reason", "bad edit"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        services.actions.revert_version.assert_called_once_with(FILE_ID, 1, "bad edit", None)

    def test_prune_versions_without_milestones(self, services: MagicMock) -> None:
        services.actions.prune_versions.return_value = ActionResult(True, "Pruned 2", 2)

        runner.invoke(app, ["prune-versions", FILE_ID, "--keep", "3", "--no-milestones"])

        services.actions.prune_versions.assert_called_once_with(FILE_ID, 3, False)

    def test_cache_trim_defaults_to_configured_limit(self, services: MagicMock) -> None:
        services.actions.trim_cache.return_value = ActionResult(True, "Evicted 0", 0)

        result = runner.invoke(app, ["cache-trim"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        services.actions.trim_cache.assert_called_once_with(None)

    def test_no_arguments_shows_help(self) -> None:
        result = runner.invoke(app, [])

        assert "Usage" in result.output


class TestInitDb:
    def test_applies_schema_and_closes_pool(self) -> None:
        with (
            patch("tierstore.cli.init_pool") as mock_init,
            patch("tierstore.cli.apply_schema") as mock_apply,
            patch("tierstore.cli.close_pool") as mock_close,
        ):
            result = runner.invoke(app, ["init-db"])

        assert result.exit_code == SUCCESS_EXIT_CODE
        mock_init.assert_called_once()
        mock_apply.assert_called_once_with()
        mock_close.assert_called_once()
