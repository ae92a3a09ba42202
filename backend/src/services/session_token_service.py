"""
JWT session tokens for logged-in shoppers.

Issues an access token (default 3 days) and a refresh token (default 7 days)
after social login. The access token is delivered as an HTTP-only cookie.

Security Requirements:
- HS256 signed with JWT_SECRET
- Tokens carry identity only (id, email, Shopify customer id), never the
  Shopify access token
- Token type claim prevents using a refresh token as an access token
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import jwt
from pydantic import BaseModel

from src.config.settings import AuthSettings
from src.services.social_auth_service import CurrentUser

logger = logging.getLogger(__name__)

TokenType = Literal["access", "refresh"]


class SessionTokenConfig(BaseModel):
    """Configuration for session token generation."""
    jwt_secret: str
    algorithm: str = "HS256"
    access_lifetime_days: int = 3
    refresh_lifetime_days: int = 7
    issuer: str = "storefront-auth"

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "SessionTokenConfig":
        return cls(
            jwt_secret=settings.jwt_secret,
            access_lifetime_days=settings.session_access_token_days,
            refresh_lifetime_days=settings.session_refresh_token_days,
            issuer=settings.session_issuer,
        )


class SessionTokenPayload(BaseModel):
    """Decoded session token payload."""
    sub: str  # local user id
    email: str
    shopify_customer_id: Optional[str] = None
    type: TokenType
    jti: str
    iss: str
    iat: int
    exp: int

    @property
    def user_id(self) -> int:
        return int(self.sub)

    def to_current_user(self) -> CurrentUser:
        return CurrentUser(
            id=self.user_id,
            email=self.email,
            shopify_customer_id=self.shopify_customer_id,
        )


class SessionTokens(BaseModel):
    """Access/refresh token pair."""
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class SessionTokenError(Exception):
    """Base exception for session token errors."""
    pass


class SessionTokenExpiredError(SessionTokenError):
    """Token has expired."""
    pass


class SessionTokenInvalidError(SessionTokenError):
    """Token is malformed, has a bad signature, or is the wrong type."""
    pass


class SessionTokenService:
    """Issues and validates session JWTs."""

    def __init__(self, config: SessionTokenConfig):
        self.config = config

    def _encode(self, user: CurrentUser, token_type: TokenType, lifetime: timedelta, now: datetime) -> str:
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "shopify_customer_id": user.shopify_customer_id,
            "type": token_type,
            "jti": str(uuid.uuid4()),
            "iss": self.config.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=self.config.algorithm)

    def issue_tokens(self, user: CurrentUser) -> SessionTokens:
        """
        Generate the access and refresh tokens for a user.

        Args:
            user: Authenticated user identity

        Returns:
            SessionTokens with both JWTs and their expiry times
        """
        now = datetime.now(timezone.utc)
        access_lifetime = timedelta(days=self.config.access_lifetime_days)
        refresh_lifetime = timedelta(days=self.config.refresh_lifetime_days)

        tokens = SessionTokens(
            access_token=self._encode(user, "access", access_lifetime, now),
            refresh_token=self._encode(user, "refresh", refresh_lifetime, now),
            access_expires_at=now + access_lifetime,
            refresh_expires_at=now + refresh_lifetime,
        )

        logger.info(
            "Issued session tokens",
            extra={
                "user_id": user.id,
                "access_expires_at": tokens.access_expires_at.isoformat(),
            },
        )
        return tokens

    def validate_token(self, token: str, expected_type: TokenType = "access") -> SessionTokenPayload:
        """
        Validate and decode a session token.

        Raises:
            SessionTokenExpiredError: If token has expired
            SessionTokenInvalidError: If token is invalid or of the wrong type
        """
        try:
            payload = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
            )
        except jwt.ExpiredSignatureError:
            raise SessionTokenExpiredError("Session token has expired")
        except jwt.InvalidTokenError as e:
            raise SessionTokenInvalidError(f"Invalid session token: {type(e).__name__}")

        try:
            token_payload = SessionTokenPayload(**payload)
        except ValueError:
            raise SessionTokenInvalidError("Session token payload is malformed")

        if token_payload.type != expected_type:
            raise SessionTokenInvalidError(
                f"Expected {expected_type} token, got {token_payload.type}"
            )

        return token_payload

    def refresh(self, refresh_token: str) -> SessionTokens:
        """Issue a new token pair from a valid refresh token."""
        payload = self.validate_token(refresh_token, expected_type="refresh")
        return self.issue_tokens(payload.to_current_user())
