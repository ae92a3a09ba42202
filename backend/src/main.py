"""
FastAPI application factory.

All process-wide components are built here once and stored on app.state:
settings, the credential vault (key derived once), the Shopify customer
client, the session token service, the identity verifier, the database
session factory and the single-flight group for token renewals.

Run with:
    uvicorn src.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from src.api.routes import auth, health
from src.config.settings import AuthSettings
from src.credentials.redaction import setup_credential_logging
from src.credentials.refresh import SingleFlight
from src.database.session import build_engine, build_session_factory
from src.integrations.shopify.customer_client import ShopifyCustomerClient
from src.platform.errors import ErrorHandlerMiddleware
from src.services.identity_verifier import FirebaseIdentityVerifier, IdentityVerifier
from src.services.session_token_service import SessionTokenConfig, SessionTokenService
from src.utils.encryption import CredentialVault

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared Shopify HTTP client on shutdown."""
    yield
    client = getattr(app.state, "shopify_client", None)
    if client is not None:
        await client.close()


def build_shopify_client(settings: AuthSettings) -> ShopifyCustomerClient:
    """
    Raises:
        ConfigurationError: If shop name or API tokens are missing
    """
    settings.require_shopify()
    return ShopifyCustomerClient(
        shop_name=settings.shopify_shop_name,
        storefront_access_token=settings.shopify_storefront_access_token,
        admin_access_token=settings.shopify_admin_access_token,
        api_version=settings.shopify_api_version,
    )


def create_app(
    settings: Optional[AuthSettings] = None,
    session_factory: Optional[sessionmaker] = None,
    shopify_client: Optional[ShopifyCustomerClient] = None,
    identity_verifier: Optional[IdentityVerifier] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings; loaded from the environment when omitted
        session_factory: Database session factory; built from DATABASE_URL when omitted
        shopify_client: Shopify customer client; built from settings when omitted
        identity_verifier: ID token verifier; Firebase when FIREBASE_PROJECT_ID is set

    Raises:
        ConfigurationError: Missing JWT secret, database URL or Shopify settings
    """
    setup_credential_logging()

    settings = settings or AuthSettings.from_env()

    app = FastAPI(
        title="Storefront Auth API",
        description="Social login and Shopify customer access-token lifecycle.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.vault = CredentialVault.from_secret(settings.credential_encryption_secret)
    app.state.session_factory = session_factory or build_session_factory(
        build_engine(settings.database_url)
    )
    app.state.shopify_client = shopify_client or build_shopify_client(settings)
    app.state.session_token_service = SessionTokenService(
        SessionTokenConfig.from_settings(settings)
    )
    app.state.renewal_flights = SingleFlight() if settings.single_flight_renewal else None

    if identity_verifier is None and settings.firebase_project_id:
        identity_verifier = FirebaseIdentityVerifier(settings.firebase_project_id)
    if identity_verifier is None:
        logger.warning(
            "No identity verifier configured; social login is disabled",
            extra={"setting": "FIREBASE_PROJECT_ID"},
        )
    app.state.identity_verifier = identity_verifier

    app.add_middleware(ErrorHandlerMiddleware)

    app.include_router(health.router)
    app.include_router(auth.router)

    logger.info(
        "Application created",
        extra={
            "environment": settings.environment,
            "single_flight_renewal": settings.single_flight_renewal,
            "expiry_buffer_minutes": settings.token_expiry_buffer_minutes,
        },
    )

    return app
