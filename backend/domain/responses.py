"""
Standard API response models and helpers.

Envelopes:
- Success: { "success": true, ...payload }
- Error: { "success": false, "error": { "code": "...", "message": "...", "details": {...} } }

The storefront frontend reads top-level keys (``order``, ``orders``,
``emailSent``), so success payloads are merged into the envelope rather than
nested under ``data``.
"""
import math
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error detail structure."""
    code: str = Field(..., description="Error code (e.g., 'order_not_found', 'malformed_input')")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(default=None, description="Additional error context")


class StandardErrorResponse(BaseModel):
    """Standard error response envelope."""
    success: bool = Field(False, description="Always false for errors")
    error: ErrorDetail = Field(..., description="Error details")


class PageMeta(BaseModel):
    """Page-number pagination metadata."""
    page: int
    limit: int
    total: int
    pages: int


def success_response(**payload: Any) -> dict[str, Any]:
    """
    Create a standardized success response.

    Returns:
        dict: { "success": true, **payload }
    """
    return {"success": True, **payload}


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return StandardErrorResponse(
        error=ErrorDetail(code=code, message=message, details=details)
    ).model_dump()


def page_meta(page: int, limit: int, total: int) -> dict[str, int]:
    """Pagination block for list endpoints (page is 1-based)."""
    return PageMeta(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if limit else 0,
    ).model_dump()
