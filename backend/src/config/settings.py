"""
Runtime settings for authentication and the Shopify customer-token lifecycle.

Values come from environment variables. Required values are never silently
defaulted: a missing one raises ConfigurationError at load time.

Tunables (expiry buffer, session lifetimes) keep the historical defaults of
5 minutes / 3 days / 7 days but can be overridden per deployment.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


DEFAULT_SHOPIFY_API_VERSION = "2025-04"
DEFAULT_TOKEN_EXPIRY_BUFFER_MINUTES = 5
DEFAULT_SESSION_ACCESS_TOKEN_DAYS = 3
DEFAULT_SESSION_REFRESH_TOKEN_DAYS = 7
DEFAULT_SESSION_COOKIE_MAX_AGE_SECONDS = 60 * 60 * 24 * 2


class ConfigurationError(Exception):
    """Raised when a required secret or setting is missing or invalid."""

    def __init__(self, message: str, setting: Optional[str] = None):
        self.setting = setting
        super().__init__(message)


class AuthSettings(BaseModel):
    """Authentication and Shopify integration settings."""

    jwt_secret: str
    credential_encryption_secret: str
    shopify_customer_password: Optional[str] = None

    shopify_shop_name: str = ""
    shopify_storefront_access_token: str = ""
    shopify_admin_access_token: str = ""
    shopify_api_version: str = DEFAULT_SHOPIFY_API_VERSION

    token_expiry_buffer_minutes: int = Field(default=DEFAULT_TOKEN_EXPIRY_BUFFER_MINUTES, ge=0)
    single_flight_renewal: bool = True

    session_access_token_days: int = Field(default=DEFAULT_SESSION_ACCESS_TOKEN_DAYS, gt=0)
    session_refresh_token_days: int = Field(default=DEFAULT_SESSION_REFRESH_TOKEN_DAYS, gt=0)
    session_cookie_max_age_seconds: int = Field(default=DEFAULT_SESSION_COOKIE_MAX_AGE_SECONDS, gt=0)
    session_issuer: str = "storefront-auth"

    firebase_project_id: Optional[str] = None
    database_url: Optional[str] = None
    environment: str = "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def require_customer_password(self) -> str:
        """
        Return the fallback password used for Shopify account creation.

        Raises:
            ConfigurationError: If SHOPIFY_CUSTOMER_PASSWORD is not set
        """
        if not self.shopify_customer_password:
            raise ConfigurationError(
                "SHOPIFY_CUSTOMER_PASSWORD is not configured",
                setting="SHOPIFY_CUSTOMER_PASSWORD",
            )
        return self.shopify_customer_password

    @classmethod
    def from_env(cls) -> "AuthSettings":
        """
        Load settings from environment variables.

        Raises:
            ConfigurationError: If JWT_SECRET is missing or a numeric value is invalid
        """
        jwt_secret = os.getenv("JWT_SECRET")
        if not jwt_secret:
            raise ConfigurationError(
                "JWT_SECRET environment variable is required",
                setting="JWT_SECRET",
            )

        try:
            settings = cls(
                jwt_secret=jwt_secret,
                credential_encryption_secret=os.getenv("CREDENTIAL_ENCRYPTION_SECRET") or jwt_secret,
                shopify_customer_password=os.getenv("SHOPIFY_CUSTOMER_PASSWORD") or None,
                shopify_shop_name=os.getenv("SHOPIFY_SHOP_NAME", ""),
                shopify_storefront_access_token=os.getenv("SHOPIFY_STOREFRONT_ACCESS_TOKEN", ""),
                shopify_admin_access_token=os.getenv("SHOPIFY_ADMIN_ACCESS_TOKEN", ""),
                shopify_api_version=os.getenv("SHOPIFY_API_VERSION", DEFAULT_SHOPIFY_API_VERSION).strip(),
                token_expiry_buffer_minutes=int(os.getenv(
                    "SHOPIFY_TOKEN_EXPIRY_BUFFER_MINUTES", str(DEFAULT_TOKEN_EXPIRY_BUFFER_MINUTES)
                )),
                single_flight_renewal=os.getenv("SHOPIFY_TOKEN_SINGLE_FLIGHT", "true").lower() == "true",
                session_access_token_days=int(os.getenv(
                    "SESSION_ACCESS_TOKEN_DAYS", str(DEFAULT_SESSION_ACCESS_TOKEN_DAYS)
                )),
                session_refresh_token_days=int(os.getenv(
                    "SESSION_REFRESH_TOKEN_DAYS", str(DEFAULT_SESSION_REFRESH_TOKEN_DAYS)
                )),
                session_cookie_max_age_seconds=int(os.getenv(
                    "SESSION_COOKIE_MAX_AGE_SECONDS", str(DEFAULT_SESSION_COOKIE_MAX_AGE_SECONDS)
                )),
                firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
                database_url=os.getenv("DATABASE_URL") or None,
                environment=os.getenv("ENVIRONMENT", "development").lower(),
            )
        except ValueError as e:
            # pydantic.ValidationError is a ValueError subclass
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if not settings.shopify_customer_password:
            logger.warning(
                "SHOPIFY_CUSTOMER_PASSWORD is not set; new social users cannot be provisioned",
                extra={"setting": "SHOPIFY_CUSTOMER_PASSWORD"},
            )

        return settings

    def require_shopify(self) -> None:
        """
        Validate the Shopify connection settings.

        Raises:
            ConfigurationError: If shop name or API tokens are missing
        """
        missing = [
            name for name, value in (
                ("SHOPIFY_SHOP_NAME", self.shopify_shop_name),
                ("SHOPIFY_STOREFRONT_ACCESS_TOKEN", self.shopify_storefront_access_token),
                ("SHOPIFY_ADMIN_ACCESS_TOKEN", self.shopify_admin_access_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Shopify configuration is missing: {', '.join(missing)}",
                setting=missing[0],
            )
