"""
Authentication dependencies.

Wires the per-process singletons held on app.state (settings, vault,
Shopify client, single-flight group) into request-scoped services, and
provides the guards used by protected routes:

- get_current_user: requires a valid session JWT (cookie or bearer header)
- require_shopify_token: additionally guarantees a valid Shopify customer
  access token for the current user, renewing it if needed

Domain errors are translated to the platform AppError family here:
    NoTokenError, ReauthRequiredError, CommerceAuthError -> 401
    CommerceUnavailableError                             -> 503
    ConfigurationError, OrphanedCustomerError            -> 500
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Generator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.config.settings import AuthSettings, ConfigurationError
from src.credentials.refresh import (
    NoTokenError,
    ReauthRequiredError,
    TokenLifecycleManager,
)
from src.credentials.store import TokenStore
from src.integrations.shopify.customer_client import (
    CommerceAuthError,
    CommerceUnavailableError,
    ShopifyCustomerClient,
)
from src.platform.errors import (
    AccountProvisioningError,
    AppError,
    AuthenticationError,
    ReauthenticationRequiredError,
    ServerConfigurationError,
    ServiceUnavailableError,
)
from src.services.identity_verifier import IdentityVerificationError, IdentityVerifier
from src.services.session_token_service import (
    SessionTokenError,
    SessionTokenExpiredError,
    SessionTokenService,
)
from src.services.social_auth_service import (
    CurrentUser,
    OrphanedCustomerError,
    SocialAuthService,
)
from src.utils.encryption import CredentialVault

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/auth/refresh"


def translate_auth_error(exc: Exception) -> AppError:
    """
    Map a domain exception to the HTTP error returned to the client.

    Unknown exceptions are returned as a generic 500 AppError.
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, (NoTokenError, ReauthRequiredError)):
        return ReauthenticationRequiredError(str(exc))
    if isinstance(exc, CommerceAuthError):
        return AuthenticationError("Shopify rejected the customer credentials")
    if isinstance(exc, CommerceUnavailableError):
        return ServiceUnavailableError("Shopify is temporarily unavailable")
    if isinstance(exc, SessionTokenExpiredError):
        return AuthenticationError("Session has expired")
    if isinstance(exc, (SessionTokenError, IdentityVerificationError)):
        return AuthenticationError("Invalid credentials")
    if isinstance(exc, ConfigurationError):
        return ServerConfigurationError()
    if isinstance(exc, OrphanedCustomerError):
        return AccountProvisioningError()
    return AppError(code="INTERNAL_ERROR", message="An unexpected error occurred")


# ---------------------------------------------------------------------------
# Process-wide components (built once in create_app)
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> AuthSettings:
    return request.app.state.settings


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_shopify_client(request: Request) -> ShopifyCustomerClient:
    client = getattr(request.app.state, "shopify_client", None)
    if client is None:
        raise ServerConfigurationError("Shopify integration is not configured")
    return client


def get_identity_verifier(request: Request) -> IdentityVerifier:
    verifier = getattr(request.app.state, "identity_verifier", None)
    if verifier is None:
        raise ServerConfigurationError("Identity verification is not configured")
    return verifier


def get_session_token_service(request: Request) -> SessionTokenService:
    return request.app.state.session_token_service


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """Yield a request-scoped database session."""
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Request-scoped services
# ---------------------------------------------------------------------------

def get_token_manager(
    request: Request,
    db: Session = Depends(get_db_session),
    client: ShopifyCustomerClient = Depends(get_shopify_client),
    vault: CredentialVault = Depends(get_vault),
    settings: AuthSettings = Depends(get_settings),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        store=TokenStore(db),
        client=client,
        vault=vault,
        expiry_buffer=timedelta(minutes=settings.token_expiry_buffer_minutes),
        single_flight=getattr(request.app.state, "renewal_flights", None),
    )


def get_social_auth_service(
    db: Session = Depends(get_db_session),
    client: ShopifyCustomerClient = Depends(get_shopify_client),
    vault: CredentialVault = Depends(get_vault),
    settings: AuthSettings = Depends(get_settings),
) -> SocialAuthService:
    return SocialAuthService(db, client, vault, settings)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def _extract_session_token(request: Request) -> Optional[str]:
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def get_current_user(
    request: Request,
    token_service: SessionTokenService = Depends(get_session_token_service),
) -> CurrentUser:
    """
    Require a valid session access token.

    Raises:
        AuthenticationError: No token, or token invalid/expired
    """
    token = _extract_session_token(request)
    if not token:
        raise AuthenticationError("User not authenticated")

    try:
        payload = token_service.validate_token(token, expected_type="access")
    except SessionTokenError as e:
        raise translate_auth_error(e)

    return payload.to_current_user()


@dataclass(frozen=True)
class ShopifyAccess:
    """Current user plus a valid Shopify customer access token."""
    user: CurrentUser
    access_token: str = field(repr=False)


async def require_shopify_token(
    current_user: CurrentUser = Depends(get_current_user),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> ShopifyAccess:
    """
    Guard for routes that call Shopify on behalf of the current user.

    Raises:
        ReauthenticationRequiredError: No token, or renewal and re-auth failed
        ServiceUnavailableError: Shopify unreachable
    """
    try:
        access_token = await manager.get_valid_access_token_string(current_user.id)
    except (NoTokenError, ReauthRequiredError, CommerceAuthError, CommerceUnavailableError) as e:
        logger.info(
            "Shopify token guard rejected request",
            extra={"user_id": current_user.id, "error_type": type(e).__name__},
        )
        raise translate_auth_error(e)

    return ShopifyAccess(user=current_user, access_token=access_token)
