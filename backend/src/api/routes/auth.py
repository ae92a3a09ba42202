"""
Shopper authentication routes.

Handles:
- POST /api/auth/firebase/{provider}: Social login with a Firebase ID token
- POST /api/auth/refresh: Exchange the refresh cookie for a new session
- POST /api/auth/logout: Clear the session cookies
- GET /api/auth/me: Current session identity
- GET /api/auth/shopify/token-status: Ensure a valid Shopify customer token

SECURITY: Session JWTs are delivered only as HTTP-only cookies; the refresh
cookie is scoped to the refresh endpoint. Shopify access tokens and the
customer password never leave the backend.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from src.api.dependencies.auth import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_COOKIE_PATH,
    REFRESH_TOKEN_COOKIE,
    ShopifyAccess,
    get_current_user,
    get_identity_verifier,
    get_session_token_service,
    get_settings,
    get_social_auth_service,
    require_shopify_token,
    translate_auth_error,
)
from src.config.settings import AuthSettings, ConfigurationError
from src.integrations.shopify.customer_client import CommerceError
from src.models.user import SocialProvider
from src.platform.errors import AuthenticationError, ValidationError
from src.services.identity_verifier import IdentityVerificationError, IdentityVerifier
from src.services.session_token_service import SessionTokenError, SessionTokenService, SessionTokens
from src.services.social_auth_service import (
    CurrentUser,
    OrphanedCustomerError,
    SocialAuthService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SocialLoginRequest(BaseModel):
    id_token: str = Field(..., min_length=1)


class SocialLoginResponse(BaseModel):
    message: str
    user_id: int
    is_new_user: bool


class CurrentUserResponse(BaseModel):
    id: int
    email: str
    shopify_customer_id: Optional[str] = None


class TokenStatusResponse(BaseModel):
    shopify_customer_id: Optional[str] = None
    valid: bool


def _set_session_cookies(response: Response, tokens: SessionTokens, settings: AuthSettings) -> None:
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=tokens.access_token,
        max_age=settings.session_cookie_max_age_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE,
        value=tokens.refresh_token,
        max_age=settings.session_refresh_token_days * 24 * 60 * 60,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


@router.post("/firebase/{provider}", response_model=SocialLoginResponse)
async def firebase_login(
    provider: SocialProvider,
    body: SocialLoginRequest,
    response: Response,
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    auth_service: SocialAuthService = Depends(get_social_auth_service),
    token_service: SessionTokenService = Depends(get_session_token_service),
    settings: AuthSettings = Depends(get_settings),
):
    """
    Sign in (or sign up) with a social provider.

    New users are provisioned as Shopify customers before the local account
    is created.
    """
    if provider == SocialProvider.LOCAL:
        raise ValidationError("Social login requires a social provider", details={"provider": provider.value})

    try:
        profile = await verifier.verify(body.id_token, provider)
        result = await auth_service.authenticate_social_user(profile, provider)
    except (IdentityVerificationError, CommerceError, ConfigurationError, OrphanedCustomerError) as e:
        raise translate_auth_error(e)

    tokens = token_service.issue_tokens(result.user)
    _set_session_cookies(response, tokens, settings)

    if result.is_new_user:
        message = f"{provider.value} registration successful and logged in."
    else:
        message = f"{provider.value} login successful."

    logger.info(
        "Social login completed",
        extra={
            "user_id": result.user.id,
            "provider": provider.value,
            "is_new_user": result.is_new_user,
        },
    )

    return SocialLoginResponse(
        message=message,
        user_id=result.user.id,
        is_new_user=result.is_new_user,
    )


@router.post("/refresh")
async def refresh_session(
    request: Request,
    response: Response,
    token_service: SessionTokenService = Depends(get_session_token_service),
    settings: AuthSettings = Depends(get_settings),
):
    """Rotate both session cookies using the refresh cookie."""
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not refresh_token:
        raise AuthenticationError("Refresh token missing")

    try:
        tokens = token_service.refresh(refresh_token)
    except SessionTokenError as e:
        raise translate_auth_error(e)

    _set_session_cookies(response, tokens, settings)
    return {"message": "Session refreshed"}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(key=ACCESS_TOKEN_COOKIE, httponly=True, samesite="lax")
    response.delete_cookie(key=REFRESH_TOKEN_COOKIE, path=REFRESH_COOKIE_PATH, httponly=True, samesite="lax")
    return {"message": "Logged out"}


@router.get("/me", response_model=CurrentUserResponse)
async def me(current_user: CurrentUser = Depends(get_current_user)):
    return CurrentUserResponse(
        id=current_user.id,
        email=current_user.email,
        shopify_customer_id=current_user.shopify_customer_id,
    )


@router.get("/shopify/token-status", response_model=TokenStatusResponse)
async def shopify_token_status(access: ShopifyAccess = Depends(require_shopify_token)):
    """Renews or re-establishes the Shopify token if needed; 401 when the shopper must sign in again."""
    return TokenStatusResponse(
        shopify_customer_id=access.user.shopify_customer_id,
        valid=True,
    )
