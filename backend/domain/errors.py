"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py. Each carries a machine-readable ``code`` that ends up in the
response envelope ({"success": false, "error": {"code": ...}}).
"""
from fastapi import HTTPException, status

from domain.constants import MALFORMED_INPUT, ORDER_NOT_FOUND


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    code = "domain_error"

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Resource not found (404)."""
    code = "not_found"

    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class OrderNotFoundError(NotFoundError):
    code = ORDER_NOT_FOUND

    def __init__(self, order_number: str):
        super().__init__("Order", order_number, details={"orderNumber": order_number})


class ValidationError(DomainError):
    """Validation error (400)."""
    code = "validation_error"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class MalformedInputError(ValidationError):
    """Webhook body that cannot be parsed at all — rejected before the resolver."""
    code = MALFORMED_INPUT


class UnauthorizedError(DomainError):
    """Unauthorized access (401). Raised for missing or bad webhook signatures."""
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class RateLimitError(DomainError):
    """Rate limit exceeded (429)."""
    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded", details: dict | None = None, headers: dict | None = None):
        super().__init__(message, status_code=status.HTTP_429_TOO_MANY_REQUESTS, details=details)
        self.headers = headers


class GatewayError(DomainError):
    """Payment gateway call failed or answered unexpectedly (502)."""
    code = "gateway_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class GatewayNotConfiguredError(DomainError):
    """Gateway credentials missing (503)."""
    code = "gateway_not_configured"

    def __init__(self, gateway: str):
        super().__init__(
            f"{gateway} is not configured on this server",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"gateway": gateway},
        )
