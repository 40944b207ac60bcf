"""
Database base configuration for SQLAlchemy models.

This module uses SQLAlchemy 2.0 style with DeclarativeBase. Request handlers
run in FastAPI's threadpool, so the engine and session factory are sync.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings

DATABASE_URL = settings.DATABASE_URL

# Database connection pool settings for server databases.
# SQLite uses SQLAlchemy's default pool and must allow cross-thread use.
POOL_SIZE = 10  # Number of connections to maintain
POOL_MAX_OVERFLOW = 20  # Max extra connections when pool exhausted
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": POOL_SIZE,
        "max_overflow": POOL_MAX_OVERFLOW,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,  # Verify connections are alive before using them
    }


engine = create_engine(
    DATABASE_URL,
    echo=False,
    **_engine_kwargs(DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """
    SQLAlchemy 2.0 declarative base class.

    Using DeclarativeBase instead of declarative_base() enables proper
    type checking for model attributes.
    """

    pass


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields a database session and ensures proper cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
