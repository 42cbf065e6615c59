"""
Database session management for PlayerLink.

There is no module-level engine: a StorageContext owns the engine and the
session factory and is passed explicitly to every component that touches
the player registry.

Usage:
    from playerlink.db import create_storage

    storage = create_storage(settings.database_url)
    with storage.session_scope() as session:
        registry = PlayerRegistry(session)
        ...
        # Commits automatically on exit, rolls back on exception
    storage.dispose()
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from playerlink.db.models import Base


@dataclass
class StorageContext:
    """Engine plus session factory shared by the readers and the correlator."""

    engine: Engine
    session_factory: sessionmaker

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Automatically commits on successful exit, rolls back on exception.

        Raises:
            Any exception from the database operation (after rollback)
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create every table that does not exist yet (tests and first runs)."""
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """Release pooled connections. Call on shutdown."""
        self.engine.dispose()


def get_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> Engine:
    """
    Create a SQLAlchemy engine with connection pooling.

    The engine is configured with:
    - Connection pool for efficient reuse (PostgreSQL)
    - A single shared connection for in-memory SQLite, so every thread
      sees the same database
    - Pre-ping to verify connections before use (handles stale connections)
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
    )


def create_storage(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
    engine: Optional[Engine] = None,
) -> StorageContext:
    """Build a StorageContext for a database URL (or an existing engine)."""
    if engine is None:
        engine = get_engine(database_url, pool_size, max_overflow, echo)
    factory = sessionmaker(
        bind=engine,
        autocommit=False,  # Commits are explicit
        autoflush=False,
        expire_on_commit=False,
    )
    return StorageContext(engine=engine, session_factory=factory)
