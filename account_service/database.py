# account_service/database.py
import logging
import os
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

log = logging.getLogger(__name__)

# Base class which all database models inherit from
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(database_url: str):
    # connect_args is ONLY needed for SQLite multithread safety
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same in-memory db
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        path = database_url.split("sqlite:///", 1)[-1]
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine):
    """Create tables that do not exist yet."""
    # models register themselves on Base at import time
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    log.info("Database tables checked/created.")


def session_scope(session_factory):
    """Generator used as a FastAPI dependency: one session per request."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
