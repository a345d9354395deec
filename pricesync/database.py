# pricesync/database.py
"""
Database connection and session management.

This module configures SQLAlchemy with:
- Environment-aware settings (SQLite for test/development, PostgreSQL in production)
- A session factory used by the job runner
- Schema creation for fresh databases

Usage:
    from pricesync.database import session_scope

    factory = create_session_factory(create_db_engine())
    with session_scope(factory) as db:
        instruments = InstrumentRepository(db).list_all()
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import settings
from .models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str | None = None, echo: bool | None = None) -> Engine:
    """
    Create SQLAlchemy engine with environment-appropriate configuration.

    Args:
        database_url: Override for settings.database_url
        echo: Override for settings.debug

    Returns:
        Engine: Configured SQLAlchemy engine

    Configuration varies by database type:
    - SQLite: Uses StaticPool so an in-memory database is shared
    - PostgreSQL: Uses QueuePool with pre-ping health checks
    """
    url = database_url or settings.database_url
    echo = settings.debug if echo is None else echo

    if url.lower().startswith("sqlite://"):
        logger.info("Configuring SQLite database")
        # check_same_thread=False: yfinance calls run in worker threads
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    logger.info("Configuring PostgreSQL database pool")
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_pre_ping=True,
        pool_timeout=30,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Provide a session that is always closed, rolled back on error.

    Yields:
        Session: A SQLAlchemy database session
    """
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
