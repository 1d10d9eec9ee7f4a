"""
Database Configuration and Connection Management

Provides engine setup and session lifecycle management for the email index
and the context store.

Design Considerations:
- One Database object per application, injected into the adapters that need it
- SQLite engines shared across worker threads (calls run via asyncio.to_thread)
- In-memory SQLite kept on a single connection so every thread sees the same data
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from onebox.storage.models import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine suitable for use from worker threads.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured engine
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, echo=echo)

    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )

    db_path = database_url.split("///", 1)[-1]
    if db_path:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args, echo=echo)


class Database:
    """Engine plus session factory with a transactional session scope."""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        self.engine = make_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

    def init_db(self) -> None:
        """
        Create all tables that do not exist yet.

        Raises:
            RuntimeError: If schema creation fails
        """
        try:
            logger.info("Initializing database schema")
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database schema initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {str(e)}")
            raise RuntimeError(f"Failed to initialize database: {str(e)}") from e

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Provide a session that commits on success and rolls back on error.

        Yields:
            SQLAlchemy session for database operations

        Raises:
            Exception: Re-raises any exceptions that occur during session use
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {str(e)}")
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()
