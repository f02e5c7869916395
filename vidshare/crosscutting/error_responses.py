"""
Name: Standard Error Responses (RFC 7807 / Problem Details)

Responsibilities:
  - Define the catalogue of stable error codes (ErrorCode)
  - Build RFC 7807 payloads (ErrorDetail) and problem+json responses
  - Provide factories for the errors pipeline stages raise

Collaborators:
  - api/exception_handlers.py: maps arbitrary exceptions onto AppHTTPException
  - crosscutting stages (body parser, rate limit, sanitize, uploads): raise factories

Notes:
  - `code` is what clients branch on; `detail` is for humans
  - request_id is appended to `errors` for correlation with logs
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorCode(str, Enum):
    # 4xx
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_BODY = "MALFORMED_BODY"
    REJECTED_INPUT = "REJECTED_INPUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    CONFLICT = "CONFLICT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA = "UNSUPPORTED_MEDIA"
    RATE_LIMITED = "RATE_LIMITED"

    # 5xx
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"


STATUS_TO_CODE: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    409: ErrorCode.CONFLICT,
    413: ErrorCode.PAYLOAD_TOO_LARGE,
    415: ErrorCode.UNSUPPORTED_MEDIA,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMITED,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


class ErrorDetail(BaseModel):
    """
    RFC 7807 problem details.

    Extra fields:
    - code: stable error code for clients
    - errors: optional list of details (e.g. [{"field": "x", "msg": "..."}])
    """

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    code: ErrorCode
    instance: str | None = None
    errors: list[dict[str, Any]] | None = None


PROBLEM_JSON_MEDIA_TYPE = "application/problem+json"


class AppHTTPException(HTTPException):
    """HTTPException carrying a stable ErrorCode, optional details and headers."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        errors: list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code
        self.errors = errors


def code_for_status(status_code: int) -> ErrorCode:
    if status_code in STATUS_TO_CODE:
        return STATUS_TO_CODE[status_code]
    if status_code >= 500:
        return ErrorCode.INTERNAL_ERROR
    return ErrorCode.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# Error factories
# ---------------------------------------------------------------------------
def malformed_body(detail: str = "Malformed JSON body") -> AppHTTPException:
    return AppHTTPException(400, ErrorCode.MALFORMED_BODY, detail)


def rejected_input(fields: list[str]) -> AppHTTPException:
    return AppHTTPException(
        400,
        ErrorCode.REJECTED_INPUT,
        "Request contains prohibited keys",
        errors=[{"field": name} for name in fields],
    )


def not_found(detail: str = "Resource not found") -> AppHTTPException:
    return AppHTTPException(404, ErrorCode.NOT_FOUND, detail)


def conflict(detail: str) -> AppHTTPException:
    return AppHTTPException(409, ErrorCode.CONFLICT, detail)


def payload_too_large(max_bytes: int) -> AppHTTPException:
    return AppHTTPException(
        413,
        ErrorCode.PAYLOAD_TOO_LARGE,
        f"Request body too large. Maximum allowed: {max_bytes} bytes",
    )


def rate_limited(
    retry_after: int, headers: Mapping[str, str] | None = None
) -> AppHTTPException:
    merged = {"Retry-After": str(retry_after)}
    merged.update(headers or {})
    return AppHTTPException(
        429,
        ErrorCode.RATE_LIMITED,
        "Too many requests, please try again later.",
        headers=merged,
    )


def internal_error(detail: str = "An unexpected error occurred") -> AppHTTPException:
    return AppHTTPException(500, ErrorCode.INTERNAL_ERROR, detail)


def database_error(detail: str = "Database operation failed") -> AppHTTPException:
    return AppHTTPException(503, ErrorCode.DATABASE_ERROR, detail)


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------
def build_problem_response(
    exc: AppHTTPException,
    *,
    instance: str | None = None,
    request_id: str | None = None,
    extra_headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render an AppHTTPException as application/problem+json."""
    errors = list(exc.errors or [])
    if request_id:
        errors.append({"request_id": request_id})

    error = ErrorDetail(
        type=f"about:blank/{exc.code.value.lower()}",
        title=exc.code.value.replace("_", " ").title(),
        status=exc.status_code,
        detail=str(exc.detail),
        code=exc.code,
        instance=instance,
        errors=errors or None,
    )

    headers = dict(extra_headers or {})
    headers.update(getattr(exc, "headers", None) or {})
    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump(mode="json", exclude_none=True),
        headers=headers or None,
        media_type=PROBLEM_JSON_MEDIA_TYPE,
    )
