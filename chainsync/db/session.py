"""Database session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from chainsync.config import Config

# Global engine instance (singleton)
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def init_db(config: Config) -> None:
    """Initialize database connection pool.

    Args:
        config: Configuration object with db_url
    """
    global _engine, _SessionLocal

    if _engine is not None:
        return  # Already initialized

    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,  # Set to True for SQL debugging
    }
    # SQLite (local runs and tests) picks its own pool class
    if make_url(config.db_url).get_backend_name() != "sqlite":
        engine_kwargs.update(pool_size=10, max_overflow=20)

    _engine = create_engine(config.db_url, **engine_kwargs)

    _SessionLocal = sessionmaker(
        bind=_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def dispose_db() -> None:
    """Close every pooled connection and forget the engine."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    """Get the global database engine.

    Returns:
        SQLAlchemy Engine instance

    Raises:
        RuntimeError: If database not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a database session with context manager.

    The session commits when the block exits cleanly, rolls back when it
    raises, and always returns its connection to the pool.

    Yields:
        SQLAlchemy Session

    Example:
        with get_session() as session:
            # Use session
            pass
    """
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
