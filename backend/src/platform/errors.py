"""
Error shapes for the storefront auth backend.

Every error leaving the API has the body
    {"error": {"code": ..., "message": ..., "details": {...}}}
and carries an X-Correlation-ID header. Stack traces, Shopify tokens and
customer identifiers are never part of a response.

Status codes in use:
- 400 VALIDATION_ERROR             bad provider or request shape
- 401 AUTHENTICATION_ERROR         no session, bad session, rejected identity
- 401 REAUTHENTICATION_REQUIRED    Shopify token cannot be recovered, sign in again
- 500 CONFIGURATION_ERROR          required server setting missing
- 500 ACCOUNT_PROVISIONING_FAILED  Shopify customer created, local row was not
- 503 SERVICE_UNAVAILABLE          Shopify unreachable
"""

import logging
import uuid
from typing import Any, Optional
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# HTTPException statuses raised by the framework itself, mapped onto our codes
_HTTP_STATUS_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_ERROR",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


class AppError(Exception):
    """
    Base application error.

    Subclasses fix the code and status; the message is the only thing a
    client sees besides them, so it must never contain secrets.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return _error_body(self.code, self.message, self.details)


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """Authentication failure (401)."""

    def __init__(self, message: str = "Authentication required", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class ReauthenticationRequiredError(AuthenticationError):
    """The shopper must sign in again through social login (401)."""

    def __init__(self, message: str = "Please sign in again"):
        super().__init__(message)
        self.code = "REAUTHENTICATION_REQUIRED"


class ServerConfigurationError(AppError):
    """Required server configuration is missing (500)."""

    def __init__(self, message: str = "Server is not configured correctly"):
        super().__init__(
            code="CONFIGURATION_ERROR",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class AccountProvisioningError(AppError):
    """A Shopify customer exists without a local account (500)."""

    def __init__(self, message: str = "Account could not be created. Please try again later."):
        super().__init__(
            code="ACCOUNT_PROVISIONING_FAILED",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class ServiceUnavailableError(AppError):
    """Service unavailable (503)."""

    def __init__(self, message: str = "Service temporarily unavailable", retry_after: Optional[int] = None):
        details = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            code="SERVICE_UNAVAILABLE",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


def _error_body(code: str, message: str, details: Optional[dict[str, Any]] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Correlation ID from the X-Correlation-ID header, then request state, else a new one."""
    correlation_id = request.headers.get(CORRELATION_HEADER)
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


def error_response(correlation_id: str, status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: correlation_id},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Turns every exception escaping a route into the standard error body.

    4xx AppErrors are logged at warning, 5xx at error, anything unexpected
    with its traceback (server side only).
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id
        request_info = {
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
        }

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except AppError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                "Application error",
                extra={**request_info, "error_code": e.code, "status_code": e.status_code},
            )
            return error_response(correlation_id, e.status_code, e.to_dict())

        except HTTPException as e:
            code = _HTTP_STATUS_CODES.get(e.status_code, "HTTP_ERROR")
            logger.warning(
                "HTTP exception",
                extra={**request_info, "error_code": code, "status_code": e.status_code},
            )
            return error_response(correlation_id, e.status_code, _error_body(code, str(e.detail)))

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={**request_info, "error_type": type(e).__name__},
            )
            return error_response(
                correlation_id,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                _error_body(
                    "INTERNAL_ERROR",
                    "An unexpected error occurred",
                    {"correlation_id": correlation_id},
                ),
            )
