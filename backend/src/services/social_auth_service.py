"""
Social login orchestration.

Finds or provisions the local user for a verified social profile. New users
get a Shopify customer account created with the shared fallback password.

Ordering (remote, then local):
1. Shopify customer is created (or resolved by email) first
2. Only after that succeeds is the local user row written

If step 1 fails no local row exists. If step 2 fails after step 1 succeeded,
the Shopify customer is orphaned: OrphanedCustomerError is raised and logged
for operational follow-up. Shopify-side creation is not rolled back.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.settings import AuthSettings
from src.credentials.redaction import CredentialAuditLogger, AuditEventType
from src.integrations.shopify.customer_client import ShopifyCustomerClient
from src.models.user import User, SocialProvider
from src.utils.encryption import CredentialVault

logger = logging.getLogger(__name__)


class SocialAuthError(Exception):
    """Base exception for social authentication errors."""
    pass


class OrphanedCustomerError(SocialAuthError):
    """Shopify customer was created but the local user could not be saved."""

    def __init__(self, message: str, shopify_customer_id: str, email: str):
        super().__init__(message)
        self.shopify_customer_id = shopify_customer_id
        self.email = email


@dataclass(frozen=True)
class SocialProfile:
    """Verified profile received from an identity provider."""
    email: str
    provider_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class CurrentUser:
    """User identity carried in the session. Never includes secrets."""
    id: int
    email: str
    shopify_customer_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "CurrentUser":
        return cls(id=user.id, email=user.email, shopify_customer_id=user.shopify_customer_id)


@dataclass(frozen=True)
class AuthenticateResult:
    """Outcome of a social login."""
    user: CurrentUser
    is_new_user: bool


class SocialAuthService:
    """
    Service for authenticating shoppers from social identity providers.
    """

    def __init__(
        self,
        db_session: Session,
        client: ShopifyCustomerClient,
        vault: CredentialVault,
        settings: AuthSettings,
    ):
        self.db = db_session
        self.client = client
        self.vault = vault
        self.settings = settings
        self.audit = CredentialAuditLogger()

    def find_user(self, email: str, provider: SocialProvider) -> Optional[User]:
        """Find the local user for an (email, provider) pair."""
        return self.db.execute(
            select(User).where(User.email == email, User.provider == provider)
        ).scalars().first()

    async def authenticate_social_user(
        self,
        profile: SocialProfile,
        provider: SocialProvider,
    ) -> AuthenticateResult:
        """
        Find or create the local user for a social profile.

        Existing users are returned as-is without any Shopify calls.

        Raises:
            ConfigurationError: SHOPIFY_CUSTOMER_PASSWORD is not configured
            CommerceAuthError / CommerceUnavailableError: Shopify provisioning
                failed; no local user was created
            OrphanedCustomerError: Shopify customer exists but the local
                user could not be saved
        """
        provider = SocialProvider(provider)
        user = self.find_user(profile.email, provider)
        if user is not None:
            logger.info(
                "Social login for existing user",
                extra={"user_id": user.id, "provider": provider.value},
            )
            return AuthenticateResult(user=CurrentUser.from_user(user), is_new_user=False)

        password = self.settings.require_customer_password()

        # Must succeed before anything is written locally.
        customer = await self.client.create_customer(
            email=profile.email,
            password=password,
            first_name=profile.first_name,
            last_name=profile.last_name,
        )

        user = User(
            email=profile.email,
            provider=provider,
            provider_uid=profile.provider_id,
            first_name=profile.first_name,
            last_name=profile.last_name,
            shopify_customer_id=customer.customer_id,
            shopify_access_token=customer.access_token,
            shopify_access_token_expires_at=customer.expires_at,
            shopify_password_encrypted=self.vault.encrypt(password),
        )

        try:
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            # A concurrent login for the same pair may have won the insert.
            existing = self.find_user(profile.email, provider)
            if existing is not None and existing.shopify_customer_id == customer.customer_id:
                logger.info(
                    "Concurrent social login created the user first",
                    extra={"user_id": existing.id, "provider": provider.value},
                )
                return AuthenticateResult(user=CurrentUser.from_user(existing), is_new_user=False)
            self._report_orphan(customer.customer_id, provider)
            raise OrphanedCustomerError(
                "Shopify customer created but local user could not be saved",
                shopify_customer_id=customer.customer_id,
                email=profile.email,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            self._report_orphan(customer.customer_id, provider)
            raise OrphanedCustomerError(
                "Shopify customer created but local user could not be saved",
                shopify_customer_id=customer.customer_id,
                email=profile.email,
            ) from e

        self.db.refresh(user)

        self.audit.log(
            event_type=AuditEventType.CUSTOMER_PROVISIONED,
            user_id=user.id,
            shopify_customer_id=customer.customer_id,
            metadata={
                "provider": provider.value,
                "shopify_customer_created": customer.created,
            },
        )

        return AuthenticateResult(user=CurrentUser.from_user(user), is_new_user=True)

    def _report_orphan(self, shopify_customer_id: str, provider: SocialProvider) -> None:
        logger.error(
            "Orphaned Shopify customer: local user creation failed",
            extra={
                "shopify_customer_id": shopify_customer_id,
                "provider": provider.value,
            },
            exc_info=True,
        )
        self.audit.log(
            event_type=AuditEventType.CUSTOMER_ORPHANED,
            shopify_customer_id=shopify_customer_id,
            metadata={"provider": provider.value},
            level=logging.ERROR,
        )
