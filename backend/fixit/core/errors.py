"""Typed application errors and their HTTP rendering."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status and JSON envelope."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[dict[str, str]]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.errors = errors
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized, token missing or invalid"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict with existing data"


class StateError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Operation not allowed in the current state"


class ExternalDependencyError(AppError):
    """Mail, SMS or blob store failure. Timeouts are reported as 503."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "An external service is unavailable"

    def __init__(self, message: Optional[str] = None, retryable: bool = False, **kwargs: Any):
        self.retryable = retryable
        if retryable:
            kwargs.setdefault("status_code", status.HTTP_503_SERVICE_UNAVAILABLE)
        super().__init__(message, **kwargs)


class InternalError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"


def _correlation_id(request: Request) -> Optional[str]:
    from fixit.middleware.request_id import get_request_id

    return get_request_id() or request.headers.get("X-Request-ID")


def error_envelope(
    request: Request,
    status_code: int,
    message: str,
    errors: Optional[list[dict[str, str]]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "success": False,
        "status": status_code,
        "message": message,
        "correlation_id": _correlation_id(request),
    }
    if errors:
        body["errors"] = errors
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[ERROR] {type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return error_envelope(request, exc.status_code, exc.message, exc.errors)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_envelope(request, exc.status_code, str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "request", "reason": error.get("msg", "invalid")})
    return error_envelope(request, status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"[ERROR] Unhandled exception on {request.method} {request.url.path}")
    return error_envelope(request, status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.default_message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
