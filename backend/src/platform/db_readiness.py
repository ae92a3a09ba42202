"""Database schema readiness checks for critical runtime tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Tables required for login and the Shopify token guard.
REQUIRED_AUTH_TABLES = (
    "users",
)


@dataclass(frozen=True)
class DBReadinessResult:
    """Result payload for DB schema readiness checks."""

    ready: bool
    missing_tables: list[str]
    checked_tables: list[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    """Check whether required tables exist in the current database schema."""
    checked = list(required_tables)
    missing: list[str] = []

    try:
        inspector = inspect(session.connection())
        for table_name in checked:
            if not inspector.has_table(table_name):
                missing.append(table_name)
    except SQLAlchemyError:
        logger.exception("Failed checking table existence", extra={"tables": checked})
        raise

    return DBReadinessResult(
        ready=len(missing) == 0,
        missing_tables=missing,
        checked_tables=checked,
    )
