from importlib import resources

from tierstore.database.connection import get_connection
from tierstore.logging.logger import Log


def load_schema_sql() -> str:
    """Read the bundled DDL script."""
    return resources.files("tierstore.database").joinpath("schema.sql").read_text(
        encoding="utf-8"
    )


def apply_schema() -> None:
    """Create all tables and indexes. Safe to run repeatedly."""
    sql = load_schema_sql()
    with get_connection() as conn:
        conn.execute(sql)
        conn.commit()
    Log.info("Database schema applied")
