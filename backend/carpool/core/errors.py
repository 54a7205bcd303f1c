"""
Typed application errors and their HTTP rendering.

Stores and services raise an ``AppError`` subclass carrying an explicit
``ErrorKind``; the kind -> status code mapping lives only in
``STATUS_BY_KIND``. Handlers render the standard envelope
``{success, message, error, errors?}``.
"""

import enum
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carpool.core.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_message = "Validation errors"


class AuthenticationError(AppError):
    kind = ErrorKind.UNAUTHENTICATED
    default_message = "Authentication failed"


class AuthorizationError(AppError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Access denied"


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    """Business-rule conflict: state machine violation, seat capacity, duplicates."""

    kind = ErrorKind.CONFLICT
    default_message = "Resource conflict"


ERROR_BY_KIND: dict[ErrorKind, type[AppError]] = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.UNAUTHENTICATED: AuthenticationError,
    ErrorKind.FORBIDDEN: AuthorizationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.INTERNAL: AppError,
}


def error_body(message: str, kind: ErrorKind, errors: Optional[list[Any]] = None) -> dict:
    body: dict[str, Any] = {"success": False, "message": message, "error": kind.value}
    if errors:
        body["errors"] = errors
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.error if exc.kind == ErrorKind.INTERNAL else logger.info
    log(
        "request_rejected",
        kind=exc.kind.value,
        reason=exc.message,
        status_code=exc.status_code,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.kind == ErrorKind.UNAUTHENTICATED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.kind, exc.errors),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.VALIDATION],
        content=error_body("Validation errors", ErrorKind.VALIDATION, errors),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", error_type=type(exc).__name__)
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.INTERNAL],
        content=error_body("Internal server error", ErrorKind.INTERNAL),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
