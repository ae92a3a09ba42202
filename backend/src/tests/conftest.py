"""
Shared pytest fixtures.

Database tests run against a real in-memory SQLite database with the same
session settings as production (autocommit=False, autoflush=False). The
services commit, so every test gets a fresh engine instead of an outer
rolled-back transaction.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.config.settings import AuthSettings
from src.db_base import Base
from src.models.user import User, SocialProvider
from src.utils.encryption import CredentialVault

TEST_JWT_SECRET = "test-jwt-secret-for-unit-tests-0123456789"
TEST_CUSTOMER_PASSWORD = "Fallback-Password-123!"


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across connections for one test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import src.models.user  # noqa: F401
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(
        jwt_secret=TEST_JWT_SECRET,
        credential_encryption_secret=TEST_JWT_SECRET,
        shopify_customer_password=TEST_CUSTOMER_PASSWORD,
        shopify_shop_name="test-shop",
        shopify_storefront_access_token="storefront-token",
        shopify_admin_access_token="shpat_0123456789abcdef",
    )


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault.from_secret(TEST_JWT_SECRET)


@pytest.fixture
def make_user(db_session, vault):
    """Insert a user row. Token/credential fields default to a healthy linked user."""

    def _make_user(
        email: str = "shopper@example.com",
        provider: SocialProvider = SocialProvider.GOOGLE,
        access_token: Optional[str] = "cached-token",
        expires_at: Optional[datetime] = None,
        password: Optional[str] = TEST_CUSTOMER_PASSWORD,
        shopify_customer_id: Optional[str] = "gid://shopify/Customer/1001",
        **overrides,
    ) -> User:
        if expires_at is None and access_token is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(days=7)
        user = User(
            email=email,
            provider=provider,
            provider_uid=overrides.pop("provider_uid", f"{provider.value}-{email}"),
            shopify_customer_id=shopify_customer_id,
            shopify_access_token=access_token,
            shopify_access_token_expires_at=expires_at,
            shopify_password_encrypted=vault.encrypt(password) if password else None,
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user
