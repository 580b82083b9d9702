from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    # Standardize error codes/messages with optional structured details.
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    detail: ErrorDetail


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error body example for OpenAPI docs.
    return {"detail": {"code": code, "message": message}}


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {
        "model": ErrorResponse,
        "description": "Bad request",
        "content": {
            "application/json": {
                "example": _error_example(code="BAD_REQUEST", message="cost: Input should be greater than 0"),
            }
        },
    },
    404: {
        "model": ErrorResponse,
        "description": "Not found",
        "content": {
            "application/json": {
                "example": _error_example(code="NOT_FOUND", message="policy not found: P-1"),
            }
        },
    },
    409: {
        "model": ErrorResponse,
        "description": "Idempotency key reused with a different payload",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="IDEMPOTENCY_KEY_REUSE",
                    message="IDEMPOTENCY_KEY_REUSE: payload mismatch for request_id",
                ),
            }
        },
    },
    500: {
        "model": ErrorResponse,
        "description": "Internal error",
        "content": {
            "application/json": {
                "example": _error_example(code="INTERNAL_ERROR", message="Internal server error"),
            }
        },
    },
}
