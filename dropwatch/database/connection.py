"""
Database connection management for dropwatch.

A ``Database`` owns one SQLAlchemy engine and its session factory. It is
constructed by whoever wires the service together and passed down, so
there is no module-level engine to reset between tests.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def get_db_path(database_url: str) -> Optional[Path]:
    """
    Get the database file path for a file-backed SQLite URL.

    Returns:
        Path to the SQLite file, or None for in-memory and non-SQLite URLs
    """
    if database_url.startswith("sqlite:///") and database_url != "sqlite:///:memory:":
        return Path(database_url[10:])
    return None


def init_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for ``database_url``.

    In-memory SQLite databases share a single connection so every session
    sees the same data.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured SQLAlchemy engine
    """
    if database_url.startswith("sqlite"):
        db_path = get_db_path(database_url)
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        if db_path is None:
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        else:
            engine = create_engine(
                database_url,
                connect_args={
                    "check_same_thread": False,
                    "timeout": 30,
                },
                pool_pre_ping=True,
                echo=echo,
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable SQLite foreign key support."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=echo,
        )

    logger.debug(f"Database engine initialized: {engine.url.render_as_string(hide_password=True)}")
    return engine


class Database:
    """Engine plus session factory.

    Usage:
        db = Database("sqlite:///dropwatch.db")
        db.create_tables()
        with db.session() as session:
            repos = RepositoryFactory(session)
            active = repos.configurations.list_active()
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.url = database_url
        self.engine = init_engine(database_url, echo=echo)
        self._session_maker = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Open a session that commits on success and rolls back on error.

        Yields:
            SQLAlchemy Session
        """
        session = self._session_maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        from dropwatch.database.models import Base

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_tables(self) -> None:
        """
        Drop all tables.

        WARNING: This will delete all data!
        """
        from dropwatch.database.models import Base

        Base.metadata.drop_all(bind=self.engine)
        logger.warning("Database tables dropped")

    def dispose(self) -> None:
        self.engine.dispose()


def open_database(database_url: str) -> Database:
    """Open a database and create any missing tables."""
    db = Database(database_url)
    db.create_tables()
    return db
