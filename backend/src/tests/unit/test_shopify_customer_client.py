"""
Unit tests for the Shopify customer client.

Shopify is mocked at the HTTP layer with respx; requests are routed by the
GraphQL operation they carry.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest
import respx

from src.integrations.shopify.customer_client import (
    CommerceAuthError,
    CommerceUnavailableError,
    ShopifyCustomerClient,
    ShopifyUserError,
)

SHOP_URL = "https://test-shop.myshopify.com"
STOREFRONT_PATH = "/api/2025-04/graphql.json"
ADMIN_PATH = "/admin/api/2025-04/graphql.json"

EXPIRES_AT = "2030-01-01T00:00:00Z"


def _token_response(key: str, token: str = "new-token", errors_key: str = "customerUserErrors"):
    return httpx.Response(200, json={"data": {key: {
        "customerAccessToken": {"accessToken": token, "expiresAt": EXPIRES_AT},
        errors_key: [],
    }}})


def _user_errors_response(key: str, errors: list, errors_key: str = "customerUserErrors"):
    return httpx.Response(200, json={"data": {key: {
        "customerAccessToken": None,
        errors_key: errors,
    }}})


def _operation(request: httpx.Request) -> str:
    query = json.loads(request.content)["query"]
    for name in ("customerAccessTokenRenew", "customerAccessTokenCreate", "customerCreate"):
        if name in query:
            return name
    return "unknown"


@pytest.fixture
def mock_shopify():
    with respx.mock(base_url=SHOP_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def client():
    return ShopifyCustomerClient(
        shop_name="test-shop",
        storefront_access_token="storefront-token",
        admin_access_token="shpat_admin",
        api_version="2025-04",
    )


class TestClientConfiguration:

    def test_urls_built_from_shop_handle(self, client):
        assert client.storefront_url == f"{SHOP_URL}{STOREFRONT_PATH}"
        assert client.admin_url == f"{SHOP_URL}{ADMIN_PATH}"

    def test_full_domain_is_accepted(self):
        client = ShopifyCustomerClient(
            shop_name="https://test-shop.myshopify.com/",
            storefront_access_token="s",
            admin_access_token="a",
            api_version="2025-04",
        )
        assert client.shop_domain == "test-shop.myshopify.com"


class TestUserErrors:

    def test_taken_code_on_email_is_email_taken(self):
        assert ShopifyUserError(message="Email has already been taken", field=["input", "email"], code="TAKEN").is_email_taken

    def test_message_match_on_email_field(self):
        assert ShopifyUserError(message="Email has already been taken", field=["email"]).is_email_taken

    def test_other_errors_are_not_email_taken(self):
        assert not ShopifyUserError(message="Password is too short", field=["password"], code="TOO_SHORT").is_email_taken


class TestRenewAccessToken:

    @pytest.mark.asyncio
    async def test_renew_success(self, mock_shopify, client):
        route = mock_shopify.post(STOREFRONT_PATH).mock(
            return_value=_token_response("customerAccessTokenRenew", "renewed", errors_key="userErrors")
        )

        result = await client.renew_access_token("old-token")

        assert result.access_token == "renewed"
        assert result.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        sent = json.loads(route.calls.last.request.content)
        assert sent["variables"] == {"customerAccessToken": "old-token"}
        assert route.calls.last.request.headers["X-Shopify-Storefront-Access-Token"] == "storefront-token"

    @pytest.mark.asyncio
    async def test_renew_user_error_raises_auth_error(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=_user_errors_response(
            "customerAccessTokenRenew",
            [{"field": ["customerAccessToken"], "message": "access token does not exist"}],
            errors_key="userErrors",
        ))

        with pytest.raises(CommerceAuthError, match="access token does not exist"):
            await client.renew_access_token("old-token")

    @pytest.mark.asyncio
    async def test_server_error_raises_unavailable(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(503))

        with pytest.raises(CommerceUnavailableError) as exc_info:
            await client.renew_access_token("old-token")

        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.asyncio
    async def test_network_error_raises_unavailable(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(CommerceUnavailableError):
            await client.renew_access_token("old-token")

    @pytest.mark.asyncio
    async def test_top_level_graphql_errors_raise_unavailable(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(
            200, json={"errors": [{"message": "Throttled"}]}
        ))

        with pytest.raises(CommerceUnavailableError, match="Throttled"):
            await client.renew_access_token("old-token")

    @pytest.mark.asyncio
    async def test_non_json_response_raises_unavailable(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(CommerceUnavailableError):
            await client.renew_access_token("old-token")


class TestCreateAccessToken:

    @pytest.mark.asyncio
    async def test_create_success(self, mock_shopify, client):
        route = mock_shopify.post(STOREFRONT_PATH).mock(
            return_value=_token_response("customerAccessTokenCreate", "issued")
        )

        result = await client.create_access_token("shopper@example.com", "pw")

        assert result.access_token == "issued"
        sent = json.loads(route.calls.last.request.content)
        assert sent["variables"]["input"] == {"email": "shopper@example.com", "password": "pw"}

    @pytest.mark.asyncio
    async def test_unidentified_customer_raises_auth_error(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=_user_errors_response(
            "customerAccessTokenCreate",
            [{"code": "UNIDENTIFIED_CUSTOMER", "field": None, "message": "Unidentified customer"}],
        ))

        with pytest.raises(CommerceAuthError) as exc_info:
            await client.create_access_token("shopper@example.com", "wrong")

        assert exc_info.value.details["codes"] == ["UNIDENTIFIED_CUSTOMER"]

    @pytest.mark.asyncio
    async def test_missing_token_in_response_raises_auth_error(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(200, json={"data": {
            "customerAccessTokenCreate": {"customerAccessToken": None, "customerUserErrors": []},
        }}))

        with pytest.raises(CommerceAuthError):
            await client.create_access_token("shopper@example.com", "pw")


class TestCreateCustomer:

    @pytest.mark.asyncio
    async def test_new_customer_gets_token(self, mock_shopify, client):
        def storefront(request):
            if _operation(request) == "customerCreate":
                return httpx.Response(200, json={"data": {"customerCreate": {
                    "customer": {"id": "gid://shopify/Customer/42", "email": "new@example.com"},
                    "customerUserErrors": [],
                }}})
            return _token_response("customerAccessTokenCreate", "first-token")

        mock_shopify.post(STOREFRONT_PATH).mock(side_effect=storefront)

        result = await client.create_customer("new@example.com", "pw", first_name="Ada", last_name="L")

        assert result.customer_id == "gid://shopify/Customer/42"
        assert result.access_token == "first-token"
        assert result.created is True

    @pytest.mark.asyncio
    async def test_email_taken_resolves_existing_customer(self, mock_shopify, client):
        def storefront(request):
            if _operation(request) == "customerCreate":
                return httpx.Response(200, json={"data": {"customerCreate": {
                    "customer": None,
                    "customerUserErrors": [{
                        "code": "TAKEN",
                        "field": ["input", "email"],
                        "message": "Email has already been taken",
                    }],
                }}})
            return _token_response("customerAccessTokenCreate", "existing-token")

        mock_shopify.post(STOREFRONT_PATH).mock(side_effect=storefront)
        admin = mock_shopify.post(ADMIN_PATH).mock(return_value=httpx.Response(200, json={"data": {
            "customers": {"edges": [{"node": {"id": "gid://shopify/Customer/7", "email": "taken@example.com"}}]},
        }}))

        result = await client.create_customer("taken@example.com", "pw")

        assert result.customer_id == "gid://shopify/Customer/7"
        assert result.access_token == "existing-token"
        assert result.created is False
        sent = json.loads(admin.calls.last.request.content)
        assert sent["variables"] == {"query": "email:taken@example.com"}
        assert admin.calls.last.request.headers["X-Shopify-Access-Token"] == "shpat_admin"

    @pytest.mark.asyncio
    async def test_email_taken_but_not_found_raises_unavailable(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(200, json={"data": {"customerCreate": {
            "customer": None,
            "customerUserErrors": [{"code": "TAKEN", "field": ["email"], "message": "Email has already been taken"}],
        }}}))
        mock_shopify.post(ADMIN_PATH).mock(return_value=httpx.Response(200, json={"data": {
            "customers": {"edges": []},
        }}))

        with pytest.raises(CommerceUnavailableError):
            await client.create_customer("ghost@example.com", "pw")

    @pytest.mark.asyncio
    async def test_other_user_errors_joined_in_message(self, mock_shopify, client):
        mock_shopify.post(STOREFRONT_PATH).mock(return_value=httpx.Response(200, json={"data": {"customerCreate": {
            "customer": None,
            "customerUserErrors": [
                {"code": "INVALID", "field": ["email"], "message": "Email is invalid"},
                {"code": "TOO_SHORT", "field": ["password"], "message": "Password is too short"},
            ],
        }}}))

        with pytest.raises(CommerceAuthError) as exc_info:
            await client.create_customer("bad", "pw")

        assert exc_info.value.message == "Email is invalid, Password is too short"
