"""
Shopify customer client for social-login provisioning and token issuance.

Uses the Storefront GraphQL API for customer operations
(customerCreate, customerAccessTokenCreate, customerAccessTokenRenew) and the
Admin GraphQL API to resolve an existing customer by email.

Error contract:
- CommerceAuthError: the platform rejected the credential or token
  (user errors such as invalid credentials, disabled account, expired token)
- CommerceUnavailableError: transport failure, 5xx/429, top-level GraphQL
  errors or an unparseable response. Retryable by the caller.

No retries are performed here.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class CommerceError(Exception):
    """Base exception for Shopify customer API errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CommerceAuthError(CommerceError):
    """Credential or token rejected by Shopify."""
    pass


class CommerceUnavailableError(CommerceError):
    """Shopify could not be reached or returned an unusable response."""
    pass


# ============================================================================
# Response types
# ============================================================================

@dataclass(frozen=True)
class ShopifyUserError:
    """A single user-facing error returned by a Shopify mutation."""
    message: str
    field: Optional[List[str]] = None
    code: Optional[str] = None

    @property
    def is_email_taken(self) -> bool:
        on_email = any("email" in (part or "").lower() for part in (self.field or []))
        if self.code == "TAKEN" and (on_email or not self.field):
            return True
        return on_email and "already been taken" in self.message.lower()


@dataclass(frozen=True)
class UserErrorsPayload:
    """Mutation returned user errors instead of a result."""
    errors: List[ShopifyUserError]

    @property
    def message(self) -> str:
        return ", ".join(e.message for e in self.errors) or "Unknown Shopify error"


@dataclass(frozen=True)
class AccessTokenPayload:
    """A customer access token issued by Shopify.

    SECURITY: access_token is excluded from repr.
    """
    access_token: str = field(repr=False)
    expires_at: datetime


@dataclass(frozen=True)
class CustomerPayload:
    """Subset of the Shopify customer record this service cares about."""
    customer_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class CreatedCustomer:
    """Result of create_customer: a new or resolved-existing customer plus a token."""
    customer_id: str
    access_token: str = field(repr=False)
    expires_at: datetime
    created: bool = True


CustomerCreateResult = Union[CustomerPayload, UserErrorsPayload]
AccessTokenResult = Union[AccessTokenPayload, UserErrorsPayload]


# ============================================================================
# GraphQL documents
# ============================================================================

CUSTOMER_CREATE = """
mutation customerCreate($input: CustomerCreateInput!) {
    customerCreate(input: $input) {
        customer {
            id
            email
            firstName
            lastName
        }
        customerUserErrors {
            code
            field
            message
        }
    }
}
"""

CUSTOMER_ACCESS_TOKEN_CREATE = """
mutation customerAccessTokenCreate($input: CustomerAccessTokenCreateInput!) {
    customerAccessTokenCreate(input: $input) {
        customerAccessToken {
            accessToken
            expiresAt
        }
        customerUserErrors {
            code
            field
            message
        }
    }
}
"""

CUSTOMER_ACCESS_TOKEN_RENEW = """
mutation customerAccessTokenRenew($customerAccessToken: String!) {
    customerAccessTokenRenew(customerAccessToken: $customerAccessToken) {
        customerAccessToken {
            accessToken
            expiresAt
        }
        userErrors {
            field
            message
        }
    }
}
"""

CUSTOMER_BY_EMAIL = """
query getCustomerByEmail($query: String!) {
    customers(first: 1, query: $query) {
        edges {
            node {
                id
                email
                firstName
                lastName
            }
        }
    }
}
"""


# ============================================================================
# Client
# ============================================================================

class ShopifyCustomerClient:
    """
    Client for Shopify customer identity operations.

    Handles:
    - Creating customers (resolving duplicates by email)
    - Issuing customer access tokens from email/password
    - Renewing customer access tokens
    """

    def __init__(
        self,
        shop_name: str,
        storefront_access_token: str,
        admin_access_token: str,
        api_version: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Shopify customer client.

        Args:
            shop_name: Shop handle (the part before .myshopify.com) or full domain
            storefront_access_token: Storefront API access token
            admin_access_token: Admin API access token (customer lookup only)
            api_version: Shopify API version, e.g. '2025-04'
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        shop_domain = shop_name.replace("https://", "").replace("http://", "").rstrip("/")
        if not shop_domain.endswith(".myshopify.com"):
            shop_domain = f"{shop_domain}.myshopify.com"
        self.shop_domain = shop_domain

        self.storefront_url = f"https://{self.shop_domain}/api/{api_version}/graphql.json"
        self.admin_url = f"https://{self.shop_domain}/admin/api/{api_version}/graphql.json"

        self._storefront_headers = {
            "X-Shopify-Storefront-Access-Token": storefront_access_token,
            "Content-Type": "application/json",
        }
        self._admin_headers = {
            "X-Shopify-Access-Token": admin_access_token,
            "Content-Type": "application/json",
        }

        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _execute_graphql(
        self,
        url: str,
        headers: Dict[str, str],
        query: str,
        variables: Optional[Dict] = None,
        operation: str = "graphql",
    ) -> Dict[str, Any]:
        """
        Execute a GraphQL document and return its `data` object.

        Raises:
            CommerceUnavailableError: On any transport or protocol failure
        """
        payload = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Shopify API HTTP error", extra={
                "shop_domain": self.shop_domain,
                "operation": operation,
                "status_code": e.response.status_code,
            })
            raise CommerceUnavailableError(
                f"Shopify API error: {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            logger.error("Shopify API request error", extra={
                "shop_domain": self.shop_domain,
                "operation": operation,
                "error_type": type(e).__name__,
            })
            raise CommerceUnavailableError(f"Request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise CommerceUnavailableError("Shopify returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise CommerceUnavailableError("Shopify returned an unexpected response")

        if data.get("errors"):
            errors = data["errors"]
            error_msg = errors[0].get("message", "Unknown GraphQL error") if isinstance(errors, list) else str(errors)
            logger.error("Shopify GraphQL error", extra={
                "shop_domain": self.shop_domain,
                "operation": operation,
                "error": error_msg,
            })
            raise CommerceUnavailableError(error_msg, details={"errors": errors})

        return data.get("data") or {}

    async def _storefront(self, query: str, variables: Dict, operation: str) -> Dict[str, Any]:
        return await self._execute_graphql(
            self.storefront_url, self._storefront_headers, query, variables, operation
        )

    async def _admin(self, query: str, variables: Dict, operation: str) -> Dict[str, Any]:
        return await self._execute_graphql(
            self.admin_url, self._admin_headers, query, variables, operation
        )

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_user_errors(raw: Optional[List[Dict[str, Any]]]) -> List[ShopifyUserError]:
        return [
            ShopifyUserError(
                message=err.get("message") or "Unknown error",
                field=err.get("field"),
                code=err.get("code"),
            )
            for err in (raw or [])
        ]

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        """Parse ISO datetime string from Shopify."""
        if not value:
            return None
        try:
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            parsed = datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @classmethod
    def _parse_access_token_result(
        cls,
        result: Optional[Dict[str, Any]],
        errors_key: str,
    ) -> AccessTokenResult:
        result = result or {}
        user_errors = cls._parse_user_errors(result.get(errors_key))
        if user_errors:
            return UserErrorsPayload(errors=user_errors)

        token = result.get("customerAccessToken") or {}
        expires_at = cls._parse_datetime(token.get("expiresAt"))
        if not token.get("accessToken") or expires_at is None:
            return UserErrorsPayload(errors=[
                ShopifyUserError(message="Shopify did not return a customer access token")
            ])

        return AccessTokenPayload(access_token=token["accessToken"], expires_at=expires_at)

    @classmethod
    def _parse_customer_create_result(cls, result: Optional[Dict[str, Any]]) -> CustomerCreateResult:
        result = result or {}
        user_errors = cls._parse_user_errors(result.get("customerUserErrors"))
        if user_errors:
            return UserErrorsPayload(errors=user_errors)

        customer = result.get("customer") or {}
        if not customer.get("id"):
            return UserErrorsPayload(errors=[
                ShopifyUserError(message="No customer returned from Shopify")
            ])

        return CustomerPayload(
            customer_id=customer["id"],
            email=customer.get("email"),
            first_name=customer.get("firstName"),
            last_name=customer.get("lastName"),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def find_customer_by_email(self, email: str) -> Optional[CustomerPayload]:
        """
        Look up a customer by email through the Admin API.

        Returns:
            CustomerPayload, or None if no customer has this email
        """
        data = await self._admin(
            CUSTOMER_BY_EMAIL, {"query": f"email:{email}"}, "customers"
        )
        edges = (data.get("customers") or {}).get("edges") or []
        if not edges:
            return None

        node = edges[0].get("node") or {}
        if not node.get("id"):
            return None

        return CustomerPayload(
            customer_id=node["id"],
            email=node.get("email"),
            first_name=node.get("firstName"),
            last_name=node.get("lastName"),
        )

    async def create_customer(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> CreatedCustomer:
        """
        Create a Shopify customer and issue an access token for it.

        If Shopify reports the email as already taken, the existing customer
        is resolved by email and returned instead; callers never see a
        duplicate-email failure.

        Raises:
            CommerceAuthError: On any other user error, or if the token
                cannot be issued for the customer
            CommerceUnavailableError: On transport failure, or when an email
                reported as taken cannot be resolved
        """
        customer_input: Dict[str, Any] = {"email": email, "password": password}
        if first_name:
            customer_input["firstName"] = first_name
        if last_name:
            customer_input["lastName"] = last_name

        data = await self._storefront(
            CUSTOMER_CREATE, {"input": customer_input}, "customerCreate"
        )
        result = self._parse_customer_create_result(data.get("customerCreate"))

        created = True
        if isinstance(result, UserErrorsPayload):
            if not any(err.is_email_taken for err in result.errors):
                logger.warning("Shopify customer creation rejected", extra={
                    "shop_domain": self.shop_domain,
                    "error_codes": [err.code for err in result.errors],
                })
                raise CommerceAuthError(result.message, details={"operation": "customerCreate"})

            logger.info("Shopify customer already exists, resolving by email", extra={
                "shop_domain": self.shop_domain,
            })
            existing = await self.find_customer_by_email(email)
            if existing is None:
                raise CommerceUnavailableError(
                    "Shopify reported the email as taken but no customer was found",
                    details={"operation": "customerCreate"},
                )
            result = existing
            created = False

        token = await self.create_access_token(email, password)

        logger.info("Shopify customer provisioned", extra={
            "shop_domain": self.shop_domain,
            "customer_id": result.customer_id,
            "created": created,
        })

        return CreatedCustomer(
            customer_id=result.customer_id,
            access_token=token.access_token,
            expires_at=token.expires_at,
            created=created,
        )

    async def create_access_token(self, email: str, password: str) -> AccessTokenPayload:
        """
        Issue a customer access token from email and password.

        Raises:
            CommerceAuthError: Invalid credentials, disabled account, or any
                other user error reported by Shopify
            CommerceUnavailableError: On transport failure
        """
        data = await self._storefront(
            CUSTOMER_ACCESS_TOKEN_CREATE,
            {"input": {"email": email, "password": password}},
            "customerAccessTokenCreate",
        )
        result = self._parse_access_token_result(
            data.get("customerAccessTokenCreate"), "customerUserErrors"
        )

        if isinstance(result, UserErrorsPayload):
            raise CommerceAuthError(
                result.message,
                details={
                    "operation": "customerAccessTokenCreate",
                    "codes": [err.code for err in result.errors if err.code],
                },
            )
        return result

    async def renew_access_token(self, access_token: str) -> AccessTokenPayload:
        """
        Exchange a not-yet-invalidated customer access token for a fresh one.

        Raises:
            CommerceAuthError: If Shopify rejects the token
            CommerceUnavailableError: On transport failure
        """
        data = await self._storefront(
            CUSTOMER_ACCESS_TOKEN_RENEW,
            {"customerAccessToken": access_token},
            "customerAccessTokenRenew",
        )
        result = self._parse_access_token_result(
            data.get("customerAccessTokenRenew"), "userErrors"
        )

        if isinstance(result, UserErrorsPayload):
            raise CommerceAuthError(
                result.message, details={"operation": "customerAccessTokenRenew"}
            )
        return result
