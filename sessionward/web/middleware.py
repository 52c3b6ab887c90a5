"""Middleware and exception handlers for the FastAPI application."""

import time
import uuid
from typing import Callable, Dict, Type

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from sessionward.auth.exceptions import (
    AccountDisabled,
    AccountLocked,
    AccountNotFound,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    ProviderConflict,
    TooManyAttempts,
    ValidationFailed,
)
from sessionward.auth.password_policy import describe_violation
from sessionward.common.logging_config import bind_context, clear_context
from sessionward.core.db.exceptions import DatabaseError

logger = structlog.get_logger(__name__)

AUTH_ERROR_STATUS: Dict[Type[AuthError], int] = {
    ValidationFailed: 400,
    DuplicateEmail: 409,
    InvalidCredentials: 401,
    AccountLocked: 423,
    InvalidToken: 401,
    ProviderConflict: 409,
    AccountDisabled: 403,
    TooManyAttempts: 429,
}

INTERNAL_ERROR_BODY = {
    "detail": "Internal server error",
    "error_type": "internal_error",
}


def _status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in AUTH_ERROR_STATUS:
            return AUTH_ERROR_STATUS[cls]
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the FastAPI application.

    Maps domain errors to HTTP status codes:
    - ValidationFailed -> 400 (with every violation)
    - InvalidCredentials, InvalidToken -> 401
    - AccountDisabled -> 403
    - DuplicateEmail, ProviderConflict -> 409
    - AccountLocked -> 423, TooManyAttempts -> 429 (both with Retry-After)
    - AccountNotFound and every DatabaseError -> generic 500

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        status_code = _status_for(exc)

        if isinstance(exc, AccountNotFound) or status_code == 500:
            logger.error(
                "auth_internal_error",
                error_type=exc.error_type,
                error=str(exc),
                path=str(request.url.path),
            )
            return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

        content = {"detail": exc.message, "error_type": exc.error_type}
        headers = {}

        if isinstance(exc, ValidationFailed):
            content["violations"] = exc.violations
            content["messages"] = [describe_violation(code) for code in exc.violations]
        elif isinstance(exc, ProviderConflict):
            content["provider"] = exc.provider
        elif isinstance(exc, (AccountLocked, TooManyAttempts)):
            content["retry_after"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, InvalidToken):
            headers["WWW-Authenticate"] = "Bearer"

        logger.info(
            "auth_request_rejected",
            error_type=exc.error_type,
            status_code=status_code,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=status_code, content=content, headers=headers or None)

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
        logger.error(
            "database_error",
            error_class=type(exc).__name__,
            error=str(exc),
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "validation_error",
            error_count=len(exc.errors()),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "error_type": "validation_error",
                "errors": [
                    {
                        "loc": list(err["loc"]),
                        "msg": err["msg"],
                        "type": err["type"],
                    }
                    for err in exc.errors()
                ],
            },
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request and bind a request id to the logging context."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        bind_context(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=str(request.url.path),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - start_time
            logger.error(
                "request_failed",
                method=request.method,
                path=str(request.url.path),
                error=str(exc),
                duration_ms=round(duration * 1000, 2),
            )
            raise
        finally:
            clear_context()

        duration = time.perf_counter() - start_time
        logger.info(
            "request_completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
            request_id=request_id,
        )
        response.headers["X-Request-ID"] = request_id
        return response
