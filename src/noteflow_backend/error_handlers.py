"""Unified error bodies.

Every HTTP error, validation failure and unhandled exception is returned as
``{error, message, request_id, details}`` instead of FastAPI's default
``{"detail": ...}``.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from noteflow_backend.schemas import ErrorResponse

logger = logging.getLogger(__name__)

_ERROR_CODES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
}


def error_code_for_status(status_code: int) -> str:
    return _ERROR_CODES.get(status_code, f"http_{status_code}")


def _error_json(
    request: Request,
    *,
    status_code: int,
    error: str,
    message: str,
    details: object | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorResponse(
        error=error,
        message=message,
        request_id=getattr(request.state, "request_id", None),
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)

    details: object | None = None
    message = str(http_exc.detail)
    if isinstance(http_exc.detail, dict):
        # Services may raise detail={"message": str, "details": object}.
        msg = http_exc.detail.get("message")
        if isinstance(msg, str):
            message = msg
            details = http_exc.detail.get("details")
        else:
            details = http_exc.detail
    elif isinstance(http_exc.detail, list):
        details = http_exc.detail

    return _error_json(
        request,
        status_code=http_exc.status_code,
        error=error_code_for_status(http_exc.status_code),
        message=message,
        details=details,
        headers=getattr(http_exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    return _error_json(
        request,
        status_code=422,
        error="validation_error",
        message="Request validation error",
        details=validation_exc.errors(),
    )


async def _storage_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Reaches here only from delta reads or queue bookkeeping; per-change
    # write failures are reported inside the sync response instead.
    logger.error(
        "storage failure request_id=%s user_id=%s path=%s",
        getattr(request.state, "request_id", None),
        getattr(request.state, "auth_user_id", None),
        request.url.path,
        exc_info=exc,
    )
    return _error_json(
        request, status_code=500, error="storage_error", message="Storage error"
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        getattr(request.state, "request_id", None),
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error_json(
        request, status_code=500, error="internal_error", message="Internal server error"
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the unified error handlers on ``app``."""

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
