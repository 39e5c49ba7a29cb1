"""
Database engine and sessions.

Production runs on Supabase Postgres; local development and tests use SQLite.
Request handlers get a session through `get_db`; Celery tasks and scripts
open one with `session_scope()`.
"""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.config import config


def normalize_database_url(url: str) -> str:
    # Supabase hands out postgres:// URLs; SQLAlchemy only accepts postgresql://
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def build_engine(url: str) -> Engine:
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,  # Supabase drops idle connections
        pool_size=5,
        max_overflow=10,
        pool_recycle=1800,
        echo=config.DEBUG,
    )


engine = build_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency.

        @router.get("/api/calls/{call_id}")
        def get_call_status(call_id: str, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request; uncommitted changes are rolled back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create missing tables. Called on application and worker startup."""
    from app import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
