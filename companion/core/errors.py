"""Error taxonomy and FastAPI handlers.

Every failure reaches the caller as a rejected call with a short message:
authorization is checked first, payload validation happens before any store
access, and store failures are logged with context but surfaced generically.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from companion.core.logging import LOGGER_NAME, get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class AuthorizationError(AppError):
    """No authenticated identity on the call."""
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class AppCheckError(AppError):
    code = "app_check_failed"
    status_code = 401
    default_message = "App check failed"


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class StoreError(AppError):
    """A read or write against the document store failed."""
    code = "store_error"
    status_code = 500
    default_message = "Store operation failed"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _error_response(rid: str, status_code: int, code: str, message: str) -> JSONResponse:
    """Single error envelope for every failure: {error: {code, message, request_id}, detail}."""
    response = JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message, "request_id": rid},
            "detail": message,
        },
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id(request)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logging.getLogger(LOGGER_NAME).log(
        level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code},
    )
    return _error_response(rid, exc.status_code, exc.code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters share the ValidationError contract."""
    rid = _request_id(request)
    logging.getLogger(LOGGER_NAME).warning(
        "request.invalid", extra={"request_id": rid, "error_code": ValidationError.code, "status": 400}
    )
    return _error_response(rid, 400, ValidationError.code, ValidationError.default_message)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logging.getLogger(LOGGER_NAME).warning(
        "http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code}
    )
    return _error_response(rid, exc.status_code, code, exc.detail or "HTTP error")


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id(request)
    logging.getLogger(LOGGER_NAME).error(
        "unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"}
    )
    return _error_response(rid, 500, "internal_error", "Unexpected error")
