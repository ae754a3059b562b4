"""Database engine and session factory.

Workers run in threads, so each unit of work opens its own short-lived
session from the factory returned here.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(db_config) -> Engine:
    """Create an engine from DatabaseConfig.

    SQLite connections are shared across worker threads and run in WAL mode
    so stage writes are durable once committed.
    """
    kwargs = {"echo": db_config.echo}
    is_sqlite = db_config.url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(db_config.url, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_wal)
    return engine


def ensure_tables(engine: Engine) -> None:
    """Create all tables if they don't already exist (idempotent)."""
    Base.metadata.create_all(engine)
    logger.info("Database tables verified/created")


def create_session_factory(db_config) -> sessionmaker:
    """Build the engine, make sure the schema exists and return a session factory."""
    engine = create_db_engine(db_config)
    ensure_tables(engine)
    return sessionmaker(engine, expire_on_commit=False)
