"""Engine and session factories for SummitKit."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = settings.database_url


def _build_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, future=True)
    sqlite_engine = create_engine(
        url, connect_args={"check_same_thread": False}, future=True
    )

    @event.listens_for(sqlite_engine, "connect")
    def _set_busy_timeout(dbapi_connection, _record):
        # Writers wait for the lock instead of failing straight away.
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(settings.sqlite_busy_timeout_ms)}")
        cursor.close()

    return sqlite_engine


engine = _build_engine(DATABASE_URL)
SessionLocal = scoped_session(
    sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
)


@contextmanager
def get_session():
    """Session for scripts and background jobs; commits when the block exits."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
