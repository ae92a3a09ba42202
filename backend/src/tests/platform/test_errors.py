"""
Error handling tests.

CRITICAL: These tests verify that:
1. All errors return consistent shapes
2. Stack traces are never returned to clients
3. Correlation IDs are included in responses
"""

import pytest
from fastapi import FastAPI, HTTPException, status
from fastapi.testclient import TestClient
from unittest.mock import Mock

from src.platform.errors import (
    AppError,
    ValidationError,
    AccountProvisioningError,
    AuthenticationError,
    ReauthenticationRequiredError,
    ServerConfigurationError,
    ServiceUnavailableError,
    ErrorHandlerMiddleware,
    generate_correlation_id,
    get_correlation_id,
)


# ============================================================================
# TEST SUITE: ERROR CLASSES
# ============================================================================

class TestErrorClasses:
    """Test error class definitions."""

    def test_app_error_to_dict(self):
        """AppError can be converted to dict."""
        error = AppError(code="TEST_ERROR", message="Test message", details={"extra": "info"})

        assert error.to_dict() == {
            "error": {"code": "TEST_ERROR", "message": "Test message", "details": {"extra": "info"}}
        }

    def test_default_app_error_is_500(self):
        assert AppError(code="X", message="x").status_code == 500

    def test_validation_error_is_400(self):
        error = ValidationError("Invalid input", {"field": "provider"})

        assert error.status_code == status.HTTP_400_BAD_REQUEST
        assert error.code == "VALIDATION_ERROR"

    def test_authentication_error_is_401(self):
        error = AuthenticationError()

        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.code == "AUTHENTICATION_ERROR"

    def test_reauthentication_required_is_401_with_own_code(self):
        """Clients distinguish 'sign in again' from a plain bad session by code."""
        error = ReauthenticationRequiredError()

        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.code == "REAUTHENTICATION_REQUIRED"
        assert isinstance(error, AuthenticationError)

    def test_server_configuration_error_is_500(self):
        error = ServerConfigurationError()

        assert error.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert error.code == "CONFIGURATION_ERROR"

    def test_account_provisioning_error_is_500(self):
        error = AccountProvisioningError()

        assert error.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert error.code == "ACCOUNT_PROVISIONING_FAILED"

    def test_service_unavailable_error_is_503(self):
        error = ServiceUnavailableError(retry_after=30)

        assert error.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert error.details == {"retry_after_seconds": 30}


# ============================================================================
# TEST SUITE: CORRELATION ID
# ============================================================================

class TestCorrelationId:

    def test_generate_correlation_id_is_unique(self):
        assert generate_correlation_id() != generate_correlation_id()

    def test_get_correlation_id_from_header(self):
        request = Mock()
        request.headers = {"X-Correlation-ID": "abc-123"}

        assert get_correlation_id(request) == "abc-123"

    def test_get_correlation_id_from_state(self):
        request = Mock()
        request.headers = {}
        request.state = Mock(correlation_id="from-state")

        assert get_correlation_id(request) == "from-state"


# ============================================================================
# TEST SUITE: MIDDLEWARE
# ============================================================================

class TestErrorHandlerMiddleware:

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(ErrorHandlerMiddleware)

        @app.get("/ok")
        async def ok():
            return {"status": "ok"}

        @app.get("/reauth")
        async def reauth():
            raise ReauthenticationRequiredError()

        @app.get("/unavailable")
        async def unavailable():
            raise ServiceUnavailableError("Shopify is temporarily unavailable")

        @app.get("/http-error")
        async def http_error():
            raise HTTPException(status_code=400, detail="HTTP error detail")

        @app.get("/unexpected")
        async def unexpected():
            raise RuntimeError("secret internal detail shpat_deadbeef")

        return TestClient(app, raise_server_exceptions=False)

    def test_successful_request_has_correlation_id(self, client):
        response = client.get("/ok", headers={"X-Correlation-ID": "trace-1"})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "trace-1"

    def test_app_error_returns_consistent_format(self, client):
        response = client.get("/reauth")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "REAUTHENTICATION_REQUIRED"
        assert "X-Correlation-ID" in response.headers

    def test_service_unavailable_is_503(self, client):
        response = client.get("/unavailable")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_http_exception_keeps_status(self, client):
        response = client.get("/http-error")

        assert response.status_code == 400

    def test_unexpected_error_returns_generic_message(self, client):
        """CRITICAL: Unexpected errors don't expose internals."""
        response = client.get("/unexpected")

        assert response.status_code == 500
        body = response.text
        assert "secret internal detail" not in body
        assert "shpat_deadbeef" not in body
        assert "Traceback" not in body
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
