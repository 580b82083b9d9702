from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from quotacore.core.errors import (
    IdempotencyConflictError,
    InvalidInputError,
    PolicyNotFoundError,
    QuotaCoreError,
)


logger = logging.getLogger(__name__)

_ERROR_MAPPING: dict[type[QuotaCoreError], tuple[int, str]] = {
    InvalidInputError: (400, "BAD_REQUEST"),
    PolicyNotFoundError: (404, "NOT_FOUND"),
    IdempotencyConflictError: (409, "IDEMPOTENCY_KEY_REUSE"),
}


def _error_body(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code, "message": message}
    if details:
        payload["details"] = details
    return {"detail": payload}


def status_for_error(exc: Exception) -> tuple[int, str]:
    # Map engine errors to status codes; anything unclassified is a 500.
    for error_type, mapping in _ERROR_MAPPING.items():
        if isinstance(exc, error_type):
            return mapping
    return 500, "INTERNAL_ERROR"


async def quota_error_handler(request: Request, exc: QuotaCoreError) -> JSONResponse:
    status_code, code = status_for_error(exc)
    if status_code >= 500:
        return await unhandled_exception_handler(request, exc)
    return JSONResponse(content=_error_body(code=code, message=str(exc)), status_code=status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies are the caller's fault, same as engine validation failures.
    payload = _error_body(
        code="BAD_REQUEST",
        message="Request validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error body.
    logger.error("unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        content=_error_body(code="INTERNAL_ERROR", message="Internal server error"),
        status_code=500,
    )
