"""
Identity-provider token verification.

Login endpoints receive an ID token from the client and must turn it into a
verified SocialProfile before calling the social auth service. The verifier
is an interface so routes do not depend on a particular provider SDK.

FirebaseIdentityVerifier verifies Firebase Authentication ID tokens
(used for Google, Apple and Kakao sign-in on the client) with the Google
securetoken public keys.
"""

import asyncio
import logging
from typing import Optional, Protocol, Tuple

import jwt

from src.models.user import SocialProvider
from src.services.social_auth_service import SocialProfile

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/"
    "securetoken@system.gserviceaccount.com"
)
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


class IdentityVerificationError(Exception):
    """The identity token could not be verified."""
    pass


class IdentityVerifier(Protocol):
    """Turns a provider-issued ID token into a verified profile."""

    async def verify(self, id_token: str, provider: SocialProvider) -> SocialProfile:
        ...


def split_display_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a display name into (first, last); single words become first name."""
    if not name or not name.strip():
        return None, None
    parts = name.strip().split(None, 1)
    return parts[0], (parts[1] if len(parts) > 1 else None)


class FirebaseIdentityVerifier:
    """Verifies Firebase ID tokens (RS256) against Google's JWKS."""

    def __init__(
        self,
        project_id: str,
        jwks_client: Optional[jwt.PyJWKClient] = None,
    ):
        if not project_id:
            raise ValueError("Firebase project id is required")
        self.project_id = project_id
        self.issuer = f"{FIREBASE_ISSUER_PREFIX}{project_id}"
        self._jwks_client = jwks_client or jwt.PyJWKClient(FIREBASE_JWKS_URL)

    def _decode(self, id_token: str) -> dict:
        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(id_token)
            return jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
            )
        except jwt.PyJWKClientError as e:
            logger.warning(
                "Unable to resolve Firebase signing key",
                extra={"error_type": type(e).__name__},
            )
            raise IdentityVerificationError("Unable to verify identity token") from e
        except jwt.InvalidTokenError as e:
            raise IdentityVerificationError(f"Invalid identity token: {type(e).__name__}") from e

    async def verify(self, id_token: str, provider: SocialProvider) -> SocialProfile:
        """
        Verify a Firebase ID token.

        Raises:
            IdentityVerificationError: Bad signature, wrong audience/issuer,
                expired, or no email claim
        """
        if not id_token:
            raise IdentityVerificationError("Identity token is required")

        # JWKS fetch is blocking network I/O.
        claims = await asyncio.to_thread(self._decode, id_token)

        email = claims.get("email")
        uid = claims.get("sub") or claims.get("user_id")
        if not email or not uid:
            raise IdentityVerificationError("Identity token has no email or subject")

        first_name, last_name = split_display_name(claims.get("name"))

        logger.info(
            "Identity token verified",
            extra={"provider": SocialProvider(provider).value},
        )

        return SocialProfile(
            email=email,
            provider_id=uid,
            first_name=first_name,
            last_name=last_name,
        )
