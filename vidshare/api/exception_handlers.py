"""
Name: Error Responder (pipeline stage 13) and exception handlers

Responsibilities:
  - Translate any exception into an RFC 7807 problem+json response
  - Map store errors: unique violation -> 409, bad data -> 400, lost connection -> 503
  - Hide internals of unexpected errors in production
  - Own the request boundary: request id, logging context, headers on errors

Collaborators:
  - crosscutting.error_responses: AppHTTPException, factories, build_problem_response
  - crosscutting.exceptions: VidshareError, DatabaseError
  - crosscutting.security, crosscutting.cors: headers published per request
  - context: set_request_context / clear_context

Notes:
  - ErrorResponderMiddleware is the outermost user middleware so every stage
    failure reaches it; it never re-raises
  - The FastAPI handlers cover errors raised inside route handlers; no
    catch-all Exception handler is registered on the app because Starlette
    re-raises those after responding
"""

from __future__ import annotations

from uuid import uuid4

import psycopg
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg import errors as pg_errors
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..context import clear_context, set_request_context
from ..crosscutting.error_responses import (
    AppHTTPException,
    ErrorCode,
    build_problem_response,
    code_for_status,
    conflict,
    database_error,
    internal_error,
    not_found,
)
from ..crosscutting.exceptions import DatabaseError, VidshareError
from ..crosscutting.cors import CORS_HEADERS_KEY
from ..crosscutting.logger import logger
from ..crosscutting.payload import scope_state
from ..crosscutting.security import SECURITY_HEADERS_KEY

REQUEST_ID_HEADER = "X-Request-Id"


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "msg": err.get("msg", ""),
        }
        for err in exc.errors()
    ]


def to_app_exception(exc: Exception, *, production: bool) -> AppHTTPException:
    """Map an arbitrary exception onto an AppHTTPException (status + stable code)."""
    if isinstance(exc, AppHTTPException):
        return exc

    if isinstance(exc, StarletteHTTPException):
        return AppHTTPException(
            status_code=exc.status_code,
            code=code_for_status(exc.status_code),
            detail=str(exc.detail),
            headers=exc.headers,
        )

    if isinstance(exc, RequestValidationError):
        return AppHTTPException(
            422,
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed",
            errors=_validation_errors(exc),
        )

    if isinstance(exc, DatabaseError):
        app_exc = database_error(exc.message)
        app_exc.errors = [{"error_id": exc.error_id}]
        return app_exc

    # R: Store errors. Messages from the driver stay out of production payloads.
    if isinstance(exc, pg_errors.UniqueViolation):
        return conflict("Duplicate field value entered")
    if isinstance(exc, pg_errors.InvalidTextRepresentation):
        return not_found("Resource not found")
    if isinstance(
        exc,
        (
            pg_errors.ForeignKeyViolation,
            pg_errors.CheckViolation,
            pg_errors.NotNullViolation,
            pg_errors.UndefinedColumn,
            psycopg.DataError,
        ),
    ):
        detail = "Invalid data" if production else f"Invalid data: {exc}"
        return AppHTTPException(400, ErrorCode.VALIDATION_ERROR, detail)
    if isinstance(exc, psycopg.OperationalError):
        return database_error("Database unavailable")

    if isinstance(exc, VidshareError):
        app_exc = internal_error("Internal error" if production else exc.message)
        app_exc.errors = [{"error_id": exc.error_id}]
        return app_exc

    return internal_error("Internal error" if production else str(exc))


def _log_failure(exc: Exception, app_exc: AppHTTPException, *, path: str) -> None:
    extra = {"code": app_exc.code.value, "status_code": app_exc.status_code, "path": path}
    if app_exc.status_code >= 500:
        # Typed HTTP errors are expected; anything else gets a stacktrace.
        logger.error(
            "request failed",
            exc_info=not isinstance(exc, StarletteHTTPException),
            extra={**extra, "error": str(exc)},
        )
    else:
        logger.info("request rejected", extra=extra)


def register_exception_handlers(app: FastAPI, *, production: bool) -> None:
    """Register problem+json handlers for errors raised inside route handlers."""

    async def problem_handler(request: Request, exc: Exception) -> JSONResponse:
        app_exc = to_app_exception(exc, production=production)
        _log_failure(exc, app_exc, path=request.url.path)
        return build_problem_response(
            app_exc,
            instance=request.url.path,
            request_id=getattr(request.state, "request_id", None),
        )

    app.add_exception_handler(StarletteHTTPException, problem_handler)
    app.add_exception_handler(RequestValidationError, problem_handler)
    app.add_exception_handler(VidshareError, problem_handler)
    app.add_exception_handler(psycopg.Error, problem_handler)


class ErrorResponderMiddleware:
    """
    Request boundary.

    - Reuses the caller's X-Request-Id or generates one, echoes it on the response
    - Binds request context for log correlation and clears it afterwards
    - Turns any escaped exception into a problem response carrying the
      security and CORS headers published by stages 6 and 8
    """

    def __init__(self, app, *, production: bool):
        self.app = app
        self._production = production

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or str(uuid4())
        state = scope_state(scope)
        state["request_id"] = request_id
        path = scope.get("path", "")
        set_request_context(
            request_id=request_id, method=scope.get("method", ""), path=path
        )

        response_started = False
        id_header = (b"x-request-id", request_id.encode("latin-1"))

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = list(message.get("headers", []))
                if not any(k.lower() == b"x-request-id" for k, _ in headers):
                    headers.append(id_header)
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                logger.error(
                    "error after response started", exc_info=True, extra={"path": path}
                )
                return

            app_exc = to_app_exception(exc, production=self._production)
            _log_failure(exc, app_exc, path=path)

            extra_headers = dict(state.get(SECURITY_HEADERS_KEY) or {})
            extra_headers.update(state.get(CORS_HEADERS_KEY) or {})
            extra_headers[REQUEST_ID_HEADER] = request_id
            response = build_problem_response(
                app_exc,
                instance=path,
                request_id=request_id,
                extra_headers=extra_headers,
            )
            await response(scope, receive, send)
        finally:
            clear_context()


__all__ = [
    "ErrorResponderMiddleware",
    "register_exception_handlers",
    "to_app_exception",
]
