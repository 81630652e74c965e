from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager, suppress

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from app.config.settings import settings


def _is_postgresql(url: str) -> bool:
    lowered = url.lower()
    return "postgresql" in lowered or "postgres" in lowered


def _validate_postgresql_driver() -> None:
    """Validate PostgreSQL driver is installed when using PostgreSQL.

    Must actually import psycopg2 (not just find_spec) because SQLAlchemy
    will try to import it when creating the engine.
    """
    if _is_postgresql(settings.database_url):
        try:
            import psycopg2  # noqa: F401

            logger.info("PostgreSQL driver (psycopg2) is available")
        except ImportError as e:
            logger.error(
                "⚠️ CRITICAL: PostgreSQL driver (psycopg2) is not installed!\n"
                "Install it with: pip install 'fieldservice-scheduler[postgres]'"
            )
            raise ImportError("PostgreSQL driver required. Install with: pip install psycopg2-binary") from e


def check_database_connection() -> None:
    """Test database connection on startup."""
    try:
        with _get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        raise


# Lazy initialization to avoid import-time database connections
_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        logger.info(f"Initializing database engine: {settings.database_url}")

        is_postgresql = _is_postgresql(settings.database_url)
        if is_postgresql:
            _validate_postgresql_driver()
            logger.info("Using PostgreSQL database (production-ready)")
        else:
            logger.warning("Using SQLite database (local development only)")

        connect_args = {}
        if "sqlite" in settings.database_url.lower():
            connect_args = {"check_same_thread": False}
        elif is_postgresql:
            connect_args = {
                "connect_timeout": 10,
                "application_name": "fieldservice-scheduler",
            }

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
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
        # Objects returned by service functions are read after the session closes
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


def _handle_session_commit(session: Session) -> None:
    """Handle session commit with logging."""
    with suppress(Exception):
        logger.debug(f"Before commit: dirty={len(session.dirty)}, new={len(session.new)}, deleted={len(session.deleted)}")
    session.commit()
    logger.debug("Database session committed successfully")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits on clean exit. Handles errors separately:
    - HTTPException: Re-raised without logging (expected API responses)
    - SchedulingError: Re-raised without logging (business rule rejection, not a DB error)
    - Other exceptions: Logged as database errors and rolled back
    """
    logger.debug("Creating new database session")
    session = _get_session_local()()
    try:
        yield session
        _handle_session_commit(session)
    except HTTPException:
        logger.debug("HTTPException in session, rolling back")
        session.rollback()
        raise
    except Exception as e:
        from app.scheduling.errors import SchedulingError

        if isinstance(e, SchedulingError):
            logger.debug(f"{type(e).__name__} in session, rolling back (business rule, not DB error)")
            session.rollback()
            raise
        logger.error(
            f"Database session error, rolling back: {e}. "
            f"Error type: {type(e).__name__}, session state: "
            f"dirty={len(session.dirty)}, new={len(session.new)}, deleted={len(session.deleted)}"
        )
        session.rollback()
        raise
    finally:
        session.close()
        logger.debug("Database session closed")
