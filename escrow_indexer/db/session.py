"""Database session management."""

from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from escrow_indexer.config import Config
from escrow_indexer.db.models import Base

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

    engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True, "echo": False}
    if config.db_url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10

    _engine = create_engine(config.db_url, **engine_kwargs)

    _SessionLocal = sessionmaker(
        bind=_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def dispose_db() -> None:
    """Close the pool and forget the engine so init_db can run again."""
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


def create_tables() -> None:
    """Create all indexer tables that do not exist yet."""
    Base.metadata.create_all(get_engine())


def dialect_insert(session: Session, model: Any) -> Any:
    """INSERT construct supporting ON CONFLICT for the session's dialect.

    Args:
        session: Database session
        model: ORM model class

    Returns:
        Dialect-specific Insert for ``model``
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Unsupported database dialect: {dialect}")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a database session with context manager.

    Commits on success, rolls back and re-raises on error.

    Yields:
        SQLAlchemy Session
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
