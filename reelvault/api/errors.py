"""
Error responses.

Every failure leaves the API as ``{"error": "<message>"}`` with a status
picked from the error type:

    400  bad request data (validation, InsufficientDataError)
    500  our own fault (ConfigurationError, SigningError)
    502  the object store's fault (UpstreamHttpError, StoreProtocolError, NetworkError)
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.errors import (
    ConfigurationError,
    InsufficientDataError,
    InvalidTransitionError,
    NetworkError,
    SigningError,
    StoreError,
    StoreProtocolError,
    UpstreamHttpError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[StoreError], int]] = [
    (InsufficientDataError, status.HTTP_400_BAD_REQUEST),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (SigningError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (UpstreamHttpError, status.HTTP_502_BAD_GATEWAY),
    (StoreProtocolError, status.HTTP_502_BAD_GATEWAY),
    (NetworkError, status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(exc: StoreError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    status_code = status_for_error(exc)
    extra = {
        "path": request.url.path,
        "error_type": type(exc).__name__,
        "error": str(exc),
    }
    if isinstance(exc, UpstreamHttpError):
        extra["upstream_status"] = exc.status_code

    if status_code >= 500:
        logger.error("Storage request failed", extra=extra)
    else:
        logger.warning("Storage request rejected", extra=extra)

    return error_response(status_code, str(exc))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid request")
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        f"{location}: {message}" if location else message,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
