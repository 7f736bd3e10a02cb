"""
Engine and session factory for the worker and ad-hoc scripts.

DATABASE_URL follows the usual SQLAlchemy form. Heroku/Render style
``postgres://`` URLs are rewritten to ``postgresql://``.
"""

import os
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopee_sync.db_base import Base
from shopee_sync.platform.errors import ConfigurationError

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine from an explicit URL or DATABASE_URL.

    Raises:
        ConfigurationError: If no database URL is available
    """
    database_url = database_url or os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError("DATABASE_URL environment variable is required")

    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create all tables known to the models package."""
    # Registers the mapped classes on Base.metadata
    from shopee_sync import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured", extra={"dialect": engine.dialect.name})


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
