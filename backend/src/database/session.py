"""
Database engine and session factories.

Sessions use autoflush=False; services flush or commit explicitly.
"""

import os
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.config.settings import ConfigurationError

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Rewrite legacy postgres:// URLs to the SQLAlchemy dialect name."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine from an explicit URL or DATABASE_URL.

    Raises:
        ConfigurationError: If no database URL is available
    """
    database_url = database_url or os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError("DATABASE_URL is not configured", setting="DATABASE_URL")

    engine = create_engine(normalize_database_url(database_url), pool_pre_ping=True)
    logger.info("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
