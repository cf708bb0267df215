from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from garmin_trainer.config.settings import settings

# Lazy initialization to avoid import-time database connections
_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        is_sqlite = "sqlite" in settings.database_url.lower()
        if is_sqlite:
            logger.warning("Using SQLite database (local development only)")
            connect_args = {"check_same_thread": False}
        else:
            connect_args = {"connect_timeout": 10, "application_name": "garmin-trainer"}

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,  # Verify connections before using (important for cloud DBs)
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


def check_database_connection() -> None:
    """Run a trivial query; raises if the database is unreachable."""
    with _get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("✅ Database connection test successful")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block exits normally. HTTPException is re-raised without
    error logging (expected API responses); any other exception is logged as a
    database error, rolled back and re-raised.
    """
    session = _get_session_local()()
    try:
        yield session
        # Always commit: bulk UPDATE/DELETE statements do not mark the session dirty
        session.commit()
    except HTTPException:
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Database session error, rolling back: {type(e).__name__}: {e}")
        session.rollback()
        raise
    finally:
        session.close()
