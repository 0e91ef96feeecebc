"""SQLAlchemy base and engine configuration."""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from inkwell.core.settings import get_settings

settings = get_settings()

# Suppress SQLAlchemy engine logging (only show errors)
logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets cross-thread access and foreign keys."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, pool_pre_ping=True)

    sqlite_engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 30},  # needed for SQLite
        echo=False,  # Disable SQL query logging
    )

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = build_engine(settings.database_url)

# Records are handed across threads after commit, so keep loaded attributes.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass
