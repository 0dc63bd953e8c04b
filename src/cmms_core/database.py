"""Database connection, session management and transaction scoping."""
import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings

logger = logging.getLogger("cmms-core.database")

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # Conservative pool settings for a shared PostgreSQL instance
    return {
        "pool_pre_ping": True,       # Verify connections before using
        "pool_size": 5,              # Base pool of 5 connections
        "max_overflow": 10,          # Allow up to 15 total connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "pool_timeout": 30,          # Timeout after 30 seconds
    }


# Create database engine
engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, name: str = "transaction") -> Iterator[Session]:
    """Run a block of work as one transaction.

    Commits when the outermost block exits cleanly and rolls back on any
    exception. Nested blocks join the enclosing transaction, so a service
    method that calls another transactional method still commits once.

    Args:
        db: Database session
        name: Label used in log messages

    Yields:
        The same session
    """
    depth = db.info.get("atomic_depth", 0)
    db.info["atomic_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except Exception:
        if depth == 0:
            db.rollback()
            logger.debug(f"Rolled back {name}")
        raise
    finally:
        db.info["atomic_depth"] = depth
