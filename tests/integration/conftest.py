import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import psycopg
import pytest

from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.models import DocumentAnalysis
from tierstore.config.settings import Settings
from tierstore.database.connection import build_conninfo, close_pool, get_connection, init_pool
from tierstore.database.schema import apply_schema
from tierstore.main import Services, build_services
from tierstore.registry.models import FileMetadata
from tierstore.storage.factory import TierRegistry
from tierstore.storage.local_adapter import LocalStorageAdapter


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "tierstore_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        psycopg.connect(build_conninfo(test_settings), connect_timeout=3).close()
    except psycopg.Error as e:
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a scratch database"
        )
    init_pool(test_settings)
    try:
        apply_schema()
        yield
    finally:
        close_pool()


def _truncate() -> None:
    with get_connection() as conn:
        # storage_files cascades to every other table.
        conn.execute("TRUNCATE storage_files CASCADE")
        conn.commit()


@pytest.fixture(autouse=True)
def clean_tables(integration_pool: None) -> Generator[None, None, None]:
    _truncate()
    yield
    _truncate()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def tiers(tmp_path: Path) -> TierRegistry:
    """Every tier backed by its own directory. The CDN tier is web-facing."""
    return TierRegistry(
        {
            "local": LocalStorageAdapter(tmp_path / "local"),
            "cloud": LocalStorageAdapter(tmp_path / "cloud", provider_name="cloud-dev"),
            "cache": LocalStorageAdapter(tmp_path / "cache", provider_name="cache"),
            "collab": LocalStorageAdapter(tmp_path / "collab", provider_name="collab"),
            "cdn": LocalStorageAdapter(
                tmp_path / "cdn", base_url="https://cdn.example.org", provider_name="cdn-dev"
            ),
        }
    )


@pytest.fixture
def analyzer() -> MagicMock:
    mock_analyzer = MagicMock(spec=BaseDocumentAnalyzer)
    mock_analyzer.classify.return_value = DocumentAnalysis(
        category="financial",
        confidence=0.42,
        subcategory="annual budget",
        summary="Annual budget for fiscal year 2024.",
        key_points=["Budget covers fiscal year 2024"],
        tags=["budget", "fy2024"],
        language="en",
    )
    return mock_analyzer


@pytest.fixture
def services(test_settings: Settings, tiers: TierRegistry, analyzer: MagicMock) -> Services:
    return build_services(test_settings, tiers=tiers, analyzer=analyzer)


@pytest.fixture
def stored_file(services: Services) -> str:
    """A registered file with no bytes placed anywhere, for queue-level tests."""
    return services.registry.create(
        FileMetadata(filename="ledger.csv", mime_type="text/csv", size_bytes=10)
    )


@pytest.fixture
def budget_pdf(tmp_path: Path, sample_pdf_bytes: bytes) -> Path:
    path = tmp_path / "upload" / "budget.pdf"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(sample_pdf_bytes)
    return path
