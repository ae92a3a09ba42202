"""
User model - local shopper identity linked to a Shopify customer.

SECURITY REQUIREMENTS:
- shopify_access_token and shopify_password_encrypted are NEVER logged
- shopify_password_encrypted holds "<hex-iv>:<hex-ciphertext>" from CredentialVault
- shopify_access_token / shopify_access_token_expires_at are written together

Lifecycle:
- Created once per (email, provider) at first successful social login
- Token fields are mutated only by the token lifecycle manager
- Never deleted by the auth core
"""

import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Enum, UniqueConstraint
)

from src.db_base import Base
from src.models.base import TimestampMixin


class SocialProvider(str, enum.Enum):
    """Identity providers a shopper can sign in with."""
    LOCAL = "local"
    GOOGLE = "google"
    APPLE = "apple"
    KAKAO = "kakao"


class User(Base, TimestampMixin):
    """
    Local shopper account.

    SECURITY:
    - Token and password columns are never exposed in API responses
    - email is unique only together with provider
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    provider = Column(
        Enum(SocialProvider, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        comment="Identity provider (local, google, apple, kakao)"
    )
    provider_uid = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Subject identifier issued by the identity provider"
    )
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)

    # Commerce linkage - set once, never changed
    shopify_customer_id = Column(
        String(255),
        nullable=True,
        comment="Shopify customer GID"
    )

    # Token cache - NEVER log these values
    shopify_access_token = Column(
        Text,
        nullable=True,
        comment="Shopify customer access token - NEVER log"
    )
    shopify_access_token_expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the Shopify customer access token expires"
    )

    # Fallback credential - NEVER log
    shopify_password_encrypted = Column(
        Text,
        nullable=True,
        comment="Vault-encrypted fallback password - NEVER log"
    )

    __table_args__ = (
        UniqueConstraint("email", "provider", name="uq_users_email_provider"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, provider={self.provider}, shopify_customer_id={self.shopify_customer_id})>"
