"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine, the session factory and the FastAPI
    dependency for database access.

WHY:
    Dashboards, data sources and ETL run logs live in the application
    database. The engine is created lazily from settings so that importing
    the package (e.g. for pure unit tests) never requires DATABASE_URL.

USAGE:
    from dashboard_studio.database import get_db

    @router.get("/items")
    def get_items(db: Session = Depends(get_db)):
        return db.query(Item).all()

REFERENCES:
    - dashboard_studio/deps.py (Settings.DATABASE_URL)
    - dashboard_studio/routers/ (consumers of these sessions)
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .deps import get_settings


# =============================================================================
# ENGINE
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from settings.

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = get_settings().DATABASE_URL
    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure backend/.env is loaded or env var is exported."
        )
    return database_url


@lru_cache()
def get_engine() -> Engine:
    """Create the engine once per process.

    NOTE: SQLite engines (used in tests/dev) do not support pool_size/max_overflow.
    """
    database_url = _get_database_url()
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


# Base is defined in models to ensure a single registry across the app
from .models import Base  # noqa: E402,F401


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Yields:
        SQLAlchemy Session instance
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI (scripts, seeding).

    Example:
        with get_sync_session() as db:
            dashboards = db.query(Dashboard).all()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables (dev and SQLite setups; production uses migrations)."""
    Base.metadata.create_all(bind=get_engine())
