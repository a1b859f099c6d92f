# core/db.py
"""
Database management for the compensation engine.
Single database, synchronous SQLAlchemy sessions.

SQLite needs two connection tweaks for the ledger to behave:
    - PRAGMA foreign_keys=ON (off by default in SQLite)
    - explicit BEGIN, so SAVEPOINT-per-posting works with pysqlite
"""
import logging
from contextlib import contextmanager
from typing import Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base

logger = logging.getLogger(__name__)

# Database engines
_engine = None
_SessionFactory = None


def _install_sqlite_hooks(engine: Engine) -> None:
    """Enable FK enforcement and let SQLAlchemy own transaction boundaries."""

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's implicit BEGIN; emitted in on_begin instead
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """
    Build an engine for the given URL.

    Args:
        database_url: SQLAlchemy URL
        **kwargs: Passed to create_engine

    Returns:
        Engine with SQLite hooks installed where applicable
    """
    kwargs.setdefault("echo", False)
    if not database_url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)

    engine = create_engine(database_url, **kwargs)

    if engine.dialect.name == "sqlite":
        _install_sqlite_hooks(engine)

    return engine


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, "sqlite:///levelpack.db")
        _engine = create_db_engine(database_url)
        logger.info(f"Database engine created: {database_url}")
    return _engine


def configure_engine(database_url: Optional[str] = None, engine: Optional[Engine] = None) -> Engine:
    """
    Replace the process-wide engine (scripts, tests).

    Args:
        database_url: URL to build a new engine from
        engine: Ready engine to use instead

    Returns:
        The active engine
    """
    global _engine
    reset_engine()
    _engine = engine if engine is not None else create_db_engine(
        database_url or Config.get(Config.DATABASE_URL)
    )
    logger.info(f"Database engine configured: {_engine.url}")
    return _engine


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine)
        logger.info("Session factory created")
    return _SessionFactory


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session instance
    """
    factory = get_session_factory()
    return factory()


@contextmanager
def get_db_session_ctx():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session_ctx() as session:
            member = session.query(Member).first()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def setup_database():
    """Initialize database - create all tables."""
    logger.info("Setting up database...")
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database setup completed")


def drop_all_tables():
    """Drop all tables - USE WITH CAUTION!"""
    logger.warning("Dropping all tables...")
    engine = get_engine()
    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")
