"""
Shopify customer access-token lifecycle.

Keeps a usable Shopify customer access token for each local user:

    ABSENT        no cached token -> NoTokenError (full social re-login)
    VALID         now + buffer < expires_at -> cached token, no network call
    EXPIRED       customerAccessTokenRenew
    RENEW_FAILED  renewal rejected -> re-authenticate with the stored
                  fallback password (customerAccessTokenCreate)
    REAUTH_FAILED no stored credentials, undecryptable blob, or rejected
                  password -> ReauthRequiredError (terminal)

CommerceUnavailableError (Shopify outage) is never treated as a rejection:
it propagates unchanged and does not trigger the re-auth fallback.

The renew -> re-auth fallback is two different operations, not a retry.
No transient failure is retried here.

SECURITY REQUIREMENTS:
- Decrypted passwords exist only in memory for the duration of one call
- Token values and passwords never appear in logs

Usage:
    manager = TokenLifecycleManager(TokenStore(db), shopify_client, vault)

    bearer = await manager.get_valid_access_token_string(user_id)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from src.credentials.store import TokenStore
from src.credentials.redaction import CredentialAuditLogger, AuditEventType
from src.config.settings import DEFAULT_TOKEN_EXPIRY_BUFFER_MINUTES
from src.integrations.shopify.customer_client import (
    AccessTokenPayload,
    CommerceAuthError,
    ShopifyCustomerClient,
)
from src.utils.encryption import CredentialVault, DecryptionError

logger = logging.getLogger(__name__)


class TokenState(str, Enum):
    """Lifecycle states of a user's Shopify token."""
    ABSENT = "absent"
    VALID = "valid"
    EXPIRED = "expired"
    RENEW_FAILED = "renew_failed"
    REAUTH_FAILED = "reauth_failed"


class TokenLifecycleError(Exception):
    """Base exception for token lifecycle errors."""

    def __init__(self, message: str, user_id: Optional[int] = None, state: Optional[TokenState] = None):
        super().__init__(message)
        self.user_id = user_id
        self.state = state


class NoTokenError(TokenLifecycleError):
    """No cached token exists; the user must log in again. Not retryable."""
    pass


class ReauthRequiredError(TokenLifecycleError):
    """Renewal and password re-authentication both failed. Terminal."""
    pass


@dataclass(frozen=True)
class CachedToken:
    """A Shopify customer access token and its expiry. SECURITY: token excluded from repr."""
    access_token: str = field(repr=False)
    expires_at: datetime


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (e.g. from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_token_expired(
    expires_at: datetime,
    buffer: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    """
    A token counts as expired once now + buffer reaches its expiry.

    The buffer absorbs clock skew and in-flight request latency.
    """
    now = now or datetime.now(timezone.utc)
    return as_utc(now) + buffer >= as_utc(expires_at)


def _consume_exception(task: asyncio.Future) -> None:
    """Mark a finished task's exception as retrieved once no caller is left to await it."""
    if not task.cancelled():
        task.exception()


class SingleFlight:
    """
    Collapse concurrent calls with the same key into one in-flight task.

    Every caller awaits the same task through asyncio.shield, so a caller
    being cancelled never cancels the shared work.
    """

    def __init__(self):
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        _consume_exception(task)


class TokenLifecycleManager:
    """
    Returns a usable Shopify customer access token for a local user,
    renewing or re-issuing it when the cached one is expired.
    """

    def __init__(
        self,
        store: TokenStore,
        client: ShopifyCustomerClient,
        vault: CredentialVault,
        expiry_buffer: timedelta = timedelta(minutes=DEFAULT_TOKEN_EXPIRY_BUFFER_MINUTES),
        single_flight: Optional[SingleFlight] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            store: Token persistence
            client: Shopify customer client
            vault: Vault holding the derived key for the fallback password
            expiry_buffer: Safety margin before the literal expiry instant
            single_flight: Shared de-duplicator for concurrent renewals; None disables it
            clock: Returns the current UTC time (injectable for tests)
        """
        self.store = store
        self.client = client
        self.vault = vault
        self.expiry_buffer = expiry_buffer
        self.single_flight = single_flight
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.audit = CredentialAuditLogger()

    def is_expired(self, expires_at: datetime) -> bool:
        return is_token_expired(expires_at, self.expiry_buffer, self._clock())

    async def get_valid_token(self, user_id: int) -> CachedToken:
        """
        Return a valid token for the user, renewing or re-issuing if needed.

        Raises:
            NoTokenError: No cached token (ABSENT)
            ReauthRequiredError: Renewal and re-authentication failed (REAUTH_FAILED)
            CommerceUnavailableError: Shopify is unreachable; retry later
        """
        info = self.store.find_token_info(user_id)

        if not info.access_token or info.expires_at is None:
            logger.info(
                "No Shopify token cached for user",
                extra={"user_id": user_id, "state": TokenState.ABSENT.value},
            )
            raise NoTokenError(
                "No Shopify token found for this user",
                user_id=user_id,
                state=TokenState.ABSENT,
            )

        if not self.is_expired(info.expires_at):
            return CachedToken(access_token=info.access_token, expires_at=info.expires_at)

        logger.info(
            "Shopify token expired or expiring soon",
            extra={
                "user_id": user_id,
                "state": TokenState.EXPIRED.value,
                "expires_at": as_utc(info.expires_at).isoformat(),
            },
        )

        if self.single_flight is not None:
            return await self.single_flight.do(
                user_id, lambda: self._refresh(user_id, info.access_token)
            )
        # Let an in-flight renewal finish and persist even if the caller goes away.
        task = asyncio.ensure_future(self._refresh(user_id, info.access_token))
        task.add_done_callback(_consume_exception)
        return await asyncio.shield(task)

    async def get_valid_access_token_string(self, user_id: int) -> str:
        """Return only the bearer string of get_valid_token()."""
        token = await self.get_valid_token(user_id)
        return token.access_token

    async def _refresh(self, user_id: int, cached_token: str) -> CachedToken:
        try:
            renewed = await self.client.renew_access_token(cached_token)
        except CommerceAuthError as e:
            # Expected when the token is past renewal; not an incident.
            logger.info(
                "Shopify token renewal rejected, falling back to re-authentication",
                extra={
                    "user_id": user_id,
                    "state": TokenState.RENEW_FAILED.value,
                    "reason": e.message,
                },
            )
        else:
            return self._persist(user_id, renewed, AuditEventType.TOKEN_RENEWED)

        return await self._reauthenticate(user_id)

    async def _reauthenticate(self, user_id: int) -> CachedToken:
        credentials = self.store.find_credentials(user_id)

        if not credentials.email or not credentials.encrypted_password:
            self._reauth_failed(user_id, "no_stored_credentials")
            raise ReauthRequiredError(
                "Failed to refresh Shopify token. No stored credentials available. "
                "User needs to re-authenticate.",
                user_id=user_id,
                state=TokenState.REAUTH_FAILED,
            )

        try:
            password = self.vault.decrypt(credentials.encrypted_password)
        except DecryptionError as e:
            self._reauth_failed(user_id, "decryption_failed")
            raise ReauthRequiredError(
                "Failed to refresh Shopify token. Stored credentials are unreadable.",
                user_id=user_id,
                state=TokenState.REAUTH_FAILED,
            ) from e

        try:
            token = await self.client.create_access_token(credentials.email, password)
        except CommerceAuthError as e:
            self._reauth_failed(user_id, "credentials_rejected")
            raise ReauthRequiredError(
                "Failed to refresh Shopify token. User needs to re-authenticate via social login.",
                user_id=user_id,
                state=TokenState.REAUTH_FAILED,
            ) from e
        finally:
            del password

        return self._persist(user_id, token, AuditEventType.TOKEN_REAUTHENTICATED)

    def _persist(self, user_id: int, token: AccessTokenPayload, event: AuditEventType) -> CachedToken:
        self.store.write_token(user_id, token.access_token, token.expires_at)
        self.audit.log(
            event_type=event,
            user_id=user_id,
            metadata={"new_expires_at": token.expires_at.isoformat()},
        )
        return CachedToken(access_token=token.access_token, expires_at=token.expires_at)

    def _reauth_failed(self, user_id: int, reason: str) -> None:
        logger.warning(
            "Shopify re-authentication not possible",
            extra={
                "user_id": user_id,
                "state": TokenState.REAUTH_FAILED.value,
                "reason": reason,
            },
        )
        self.audit.log(
            event_type=AuditEventType.TOKEN_REAUTH_REQUIRED,
            user_id=user_id,
            metadata={"reason": reason},
        )
