"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Creates SQLAlchemy engines and sessions for the SQL-backed
queue.

- Connection pooling for server databases
- Single shared connection for in-memory SQLite
- Transaction scope with rollback on any error

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from core.logging_utils import mask_url
from storage.models.base import Base


logger = logging.getLogger(__name__)


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"))


def create_database_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy URL
        pool_size: Connections kept in the pool (server databases)
        max_overflow: Extra connections beyond pool_size
        pool_timeout: Seconds to wait for a connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    logger.info(f"Creating database engine for: {mask_url(database_url)}")

    if _is_sqlite_memory(database_url):
        engine = create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    elif database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def create_all_tables(engine: Engine) -> None:
    """Create every table registered on the declarative base."""
    Base.metadata.create_all(engine)
    logger.info(f"Database tables ensured: {sorted(Base.metadata.tables)}")


def verify_connection(engine: Engine) -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).fetchone()
    return True


@contextmanager
def transaction_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Session with explicit transaction boundaries.

    Commits only if no exception occurs. Rolls back on ANY exception.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database transaction failed, rolling back: {e}")
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
