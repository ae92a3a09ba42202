"""
Credentials module for Shopify customer-token management.

This module provides:
- Token persistence (cached access token + expiry, fallback credential)
- Token lifecycle: expiry detection, renewal, password re-authentication
- Audit logging with automatic redaction

SECURITY:
- The fallback password is stored encrypted (see src.utils.encryption)
- Tokens and passwords NEVER appear in logs or API responses

Usage:
    from src.credentials import TokenStore, TokenLifecycleManager

    manager = TokenLifecycleManager(TokenStore(db_session), shopify_client, vault)
    bearer = await manager.get_valid_access_token_string(user_id)
"""

from src.credentials.store import (
    TokenStore,
    TokenStoreError,
    UserNotFoundError,
    TokenInfo,
    StoredCredentials,
)
from src.credentials.refresh import (
    TokenLifecycleManager,
    TokenLifecycleError,
    TokenState,
    CachedToken,
    NoTokenError,
    ReauthRequiredError,
    SingleFlight,
    is_token_expired,
)
from src.credentials.redaction import (
    redact_credential_data,
    CredentialAuditLogger,
    CredentialLoggingFilter,
    AuditEventType,
    setup_credential_logging,
)

__all__ = [
    # Store
    "TokenStore",
    "TokenStoreError",
    "UserNotFoundError",
    "TokenInfo",
    "StoredCredentials",
    # Lifecycle
    "TokenLifecycleManager",
    "TokenLifecycleError",
    "TokenState",
    "CachedToken",
    "NoTokenError",
    "ReauthRequiredError",
    "SingleFlight",
    "is_token_expired",
    # Redaction & Audit
    "redact_credential_data",
    "CredentialAuditLogger",
    "CredentialLoggingFilter",
    "AuditEventType",
    "setup_credential_logging",
]
