"""
Database Configuration - SQLAlchemy setup for the sleep record store
Handles engine creation, session factories, and the transactional unit of work
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool
from decouple import config

logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = config('SLEEP_DATABASE_URL', default='sqlite:///sleep_record.db')
DB_TIMEOUT_SECONDS = config('SLEEP_DB_TIMEOUT_SECONDS', default=10, cast=int)

# SQLAlchemy engine configuration
engine = None
SessionLocal = None
Base = declarative_base()


class StorageError(RuntimeError):
    """Raised when a read or write against the sleep store fails or times out."""


def create_db_engine(database_url: str, timeout_seconds: int = DB_TIMEOUT_SECONDS) -> Engine:
    """Create an engine whose calls fail within ``timeout_seconds``."""
    if database_url.startswith('sqlite'):
        # sqlite3 waits this long on a locked database before raising
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False, 'timeout': timeout_seconds},
            echo=False
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=timeout_seconds,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,   # Recycle connections every hour
        echo=False
    )


def create_session_factory(db_engine: Engine) -> sessionmaker:
    """Session factory bound to ``db_engine``; objects stay usable after commit."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=db_engine
    )


def init_database(database_url: Optional[str] = None, timeout_seconds: int = DB_TIMEOUT_SECONDS) -> bool:
    """Initialize database engine and session factory."""
    global engine, SessionLocal

    url = database_url or DATABASE_URL
    if not url:
        logger.info("No sleep database URL provided")
        return False

    try:
        engine = create_db_engine(url, timeout_seconds)
        SessionLocal = create_session_factory(engine)
        logger.info("✓ Sleep database connection initialized successfully")
        return True
    except Exception as e:
        logger.error(f"✗ Failed to initialize sleep database: {e}")
        return False


def create_tables(db_engine: Optional[Engine] = None) -> bool:
    """Create all tables defined in models."""
    target = db_engine or engine
    if target is None:
        logger.warning("Database engine not initialized")
        return False

    # Register the models on Base.metadata
    import shared.data.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=target)
        logger.info("✓ Database tables created/verified successfully")
        return True
    except SQLAlchemyError as e:
        logger.error(f"✗ Failed to create database tables: {e}")
        return False


def get_session_factory() -> sessionmaker:
    """Return the session factory created by init_database()."""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return SessionLocal


@contextmanager
def session_scope(session_factory: sessionmaker, operation: str = 'sleep store operation') -> Generator[Session, None, None]:
    """
    Run a block as one transaction.

    Commits on success, rolls back on any error. SQLAlchemy failures are
    logged and re-raised as StorageError so callers deal with one type.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"✗ {operation} failed: {e}")
        raise StorageError(f"{operation} failed") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def is_database_available() -> bool:
    """Check if the sleep database is configured and initialized."""
    return engine is not None and SessionLocal is not None
