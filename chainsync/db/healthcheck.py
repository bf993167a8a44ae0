"""Database health check - verify required tables exist."""

from sqlalchemy import inspect

from chainsync.db.models import Base
from chainsync.db.session import get_engine
from chainsync.log import get_logger

logger = get_logger(__name__)

# Required tables that must exist
REQUIRED_TABLES = sorted(Base.metadata.tables)


def missing_tables() -> list[str]:
    """Return the required tables absent from the database."""
    existing = set(inspect(get_engine()).get_table_names())
    return [name for name in REQUIRED_TABLES if name not in existing]


def check_tables_exist() -> None:
    """Verify all required tables exist in the database.

    Raises:
        RuntimeError: If any required table is missing
    """
    logger.info("Checking database schema...")

    missing = missing_tables()
    if missing:
        raise RuntimeError(
            f"DB schema missing. Tables {', '.join(missing)} do not exist. "
            "Run 'chainsync setup-db' first."
        )

    logger.info("All required tables exist")


def create_tables() -> None:
    """Create any missing tables."""
    Base.metadata.create_all(get_engine())
    logger.info(f"Ensured tables: {', '.join(REQUIRED_TABLES)}")
