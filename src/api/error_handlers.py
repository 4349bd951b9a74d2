"""
Exception handlers - map the domain error taxonomy to HTTP responses.

Every handled error renders ``{"success": false, "message", "code",
"details"}``. Unexpected exceptions render a generic 500 without leaking
internals.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.domain.exceptions import (
    AlreadyVerified,
    AttemptsExceeded,
    CodeExpired,
    CompletionInProgress,
    ConflictError,
    CooldownActive,
    DatabaseUnavailable,
    DeliveryFailed,
    InvalidCode,
    MissingIdentity,
    MobileMismatch,
    RateLimited,
    ServiceError,
    SessionNotFound,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

# Most specific class first; lookup walks the exception's MRO
STATUS_CODES: dict[type[ServiceError], int] = {
    ConflictError: status.HTTP_409_CONFLICT,
    CompletionInProgress: status.HTTP_409_CONFLICT,
    SessionNotFound: status.HTTP_404_NOT_FOUND,
    CodeExpired: status.HTTP_404_NOT_FOUND,
    MobileMismatch: status.HTTP_400_BAD_REQUEST,
    AlreadyVerified: status.HTTP_400_BAD_REQUEST,
    InvalidCode: status.HTTP_400_BAD_REQUEST,
    MissingIdentity: status.HTTP_400_BAD_REQUEST,
    AttemptsExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    CooldownActive: status.HTTP_429_TOO_MANY_REQUESTS,
    RateLimited: status.HTTP_429_TOO_MANY_REQUESTS,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    DatabaseUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    DeliveryFailed: status.HTTP_502_BAD_GATEWAY,
}


def status_for(exc: ServiceError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, code: str, details: dict | None = None) -> dict:
    return {"success": False, "message": message, "code": code, "details": details or {}}


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    elif isinstance(exc, CooldownActive):
        headers = {"Retry-After": str(exc.remaining_seconds)}

    if status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.message, exc.code, exc.details),
        headers=headers,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "INTERNAL_ERROR"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
