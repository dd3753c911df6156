"""Database health check - verify required tables exist."""

from sqlalchemy import inspect

from escrow_indexer.db.models import Base
from escrow_indexer.db.session import get_engine
from escrow_indexer.log import get_logger

logger = get_logger(__name__)

# Required tables that must exist
REQUIRED_TABLES = sorted(Base.metadata.tables)


def check_tables_exist() -> None:
    """Verify all required tables exist in the database.

    Raises:
        RuntimeError: If any required table is missing
    """
    logger.info("Checking database schema...")

    existing = set(inspect(get_engine()).get_table_names())
    missing = [name for name in REQUIRED_TABLES if name not in existing]
    if missing:
        raise RuntimeError(
            f"DB schema missing. Tables {', '.join(missing)} do not exist. "
            "Run 'escrow-indexer init-db' first."
        )

    logger.info("All required tables exist")
