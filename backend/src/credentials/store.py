"""
Token store for cached Shopify customer credentials.

Pure persistence: reads and writes the token cache and the fallback
credential on the users table. No business logic lives here.

SECURITY REQUIREMENTS:
- Token values and encrypted passwords are never logged
- access token and expiry are written by a single UPDATE (both or neither)
- Writes are last-write-wins; concurrent renewals may overwrite each other

Usage:
    store = TokenStore(db_session)

    info = store.find_token_info(user_id)
    creds = store.find_credentials(user_id)
    store.write_token(user_id, new_token, new_expires_at)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.models.user import User

logger = logging.getLogger(__name__)


class TokenStoreError(Exception):
    """Base exception for token store errors."""
    pass


class UserNotFoundError(TokenStoreError):
    """No user row exists for the given id."""
    pass


@dataclass(frozen=True)
class TokenInfo:
    """Cached token pair. SECURITY: access_token excluded from repr."""
    access_token: Optional[str] = field(repr=False)
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class StoredCredentials:
    """Email and encrypted fallback password. SECURITY: blob excluded from repr."""
    email: Optional[str]
    encrypted_password: Optional[str] = field(repr=False)


class TokenStore:
    """
    Read/write access to a user's Shopify token cache.

    Unknown user ids read as empty records rather than raising, so the
    lifecycle manager treats them as having no token.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def find_token_info(self, user_id: int) -> TokenInfo:
        """Return the cached access token and its expiry."""
        row = self.db.execute(
            select(
                User.shopify_access_token,
                User.shopify_access_token_expires_at,
            ).where(User.id == user_id)
        ).first()

        if row is None:
            return TokenInfo(access_token=None, expires_at=None)

        return TokenInfo(access_token=row[0] or None, expires_at=row[1])

    def find_credentials(self, user_id: int) -> StoredCredentials:
        """Return the email and encrypted fallback password."""
        row = self.db.execute(
            select(User.email, User.shopify_password_encrypted).where(User.id == user_id)
        ).first()

        if row is None:
            return StoredCredentials(email=None, encrypted_password=None)

        return StoredCredentials(email=row[0] or None, encrypted_password=row[1] or None)

    def write_token(self, user_id: int, access_token: str, expires_at: datetime) -> None:
        """
        Persist a new token pair atomically.

        Raises:
            ValueError: If token or expiry is missing
            UserNotFoundError: If the user row does not exist
        """
        if not access_token or expires_at is None:
            raise ValueError("access_token and expires_at must be written together")

        try:
            result = self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(
                    shopify_access_token=access_token,
                    shopify_access_token_expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise UserNotFoundError(f"User not found: {user_id}")
            self.db.commit()
        except UserNotFoundError:
            raise
        except Exception:
            self.db.rollback()
            logger.error(
                "Failed to persist Shopify token",
                extra={"user_id": user_id},
                exc_info=True,
            )
            raise

        logger.info(
            "Shopify token persisted",
            extra={"user_id": user_id, "expires_at": expires_at.isoformat()},
        )
