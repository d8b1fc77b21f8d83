"""
Database configuration and session management with dual database support.
Supports SQLite (default) and PostgreSQL (optional override).
"""
import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from media_migrator.core.config import settings
from media_migrator.core.logging_config import LogCategory, _sanitize_data

logger = logging.getLogger(LogCategory.DB)


def build_engine(database_url: str) -> Engine:
    """Create an engine with database-specific configuration."""
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        # SQLite-specific optimizations
        is_sqlite_memory = url.database in (None, "", ":memory:")

        engine_kwargs = {
            "echo": False,
            "connect_args": {"check_same_thread": False},
        }
        if is_sqlite_memory:
            engine_kwargs["poolclass"] = StaticPool

        engine = create_engine(database_url, **engine_kwargs)
        logger.info(f"Configured SQLite engine ({'in-memory' if is_sqlite_memory else 'file-based'})")

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Set SQLite-specific pragma settings for optimal performance."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not is_sqlite_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA cache_size=10000")
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.close()

        return engine

    if backend in {"postgres", "postgresql"}:
        engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=5,
            pool_recycle=3600,
        )
        logger.info("Configured PostgreSQL engine with connection pooling")
        return engine

    logger.warning(
        f"Using unsupported database type '{backend}'. "
        "Install the appropriate DB driver for production use."
    )
    return create_engine(database_url, echo=False, pool_pre_ping=True)


database_url = settings.effective_database_url
logger.info(f"Using {settings.database_type} database: {_sanitize_data(database_url)}")
engine = build_engine(database_url)


def create_db_and_tables(bind: Engine = None):
    """
    Create all tables.

    The relational schema is owned by the host application; this helper exists
    for development databases and tests.
    """
    # Register every table on the metadata before create_all
    import media_migrator.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
    logger.info("Database tables created successfully")


def get_session_context():
    """
    Get database session as context manager.

    Example:
        with get_session_context() as session:
            # use session
            pass
    """
    return Session(engine)


HOOKS_ENABLED_KEY = "hooks_enabled"


def hooks_enabled(session: Session) -> bool:
    """Whether entity change hooks run for this session (enabled unless switched off)."""
    return session.info.get(HOOKS_ENABLED_KEY, True)
