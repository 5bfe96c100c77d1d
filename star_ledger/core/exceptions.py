from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from star_ledger.ledger.errors import (
    BackendUnavailableError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)

logger = logging.getLogger("stars.api.errors")

_STATUS_CODE_TO_ERROR_CODE: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_409_CONFLICT: "CONFLICT",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "VALIDATION_ERROR",
    status.HTTP_503_SERVICE_UNAVAILABLE: "BACKEND_UNAVAILABLE",
}

_LEDGER_ERRORS: tuple[tuple[type[LedgerError], int, str], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "INVALID_TRANSITION"),
    (TransactionConflictError, status.HTTP_409_CONFLICT, "TRANSACTION_CONFLICT"),
    (BackendUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "BACKEND_UNAVAILABLE"),
)


def _build_error(
    *,
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return payload


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _STATUS_CODE_TO_ERROR_CODE.get(exc.status_code, "HTTP_ERROR")
    message = "Request failed"
    details: Any | None = None

    if isinstance(exc.detail, str):
        message = exc.detail
    elif isinstance(exc.detail, Mapping):
        raw_code = exc.detail.get("code")
        raw_message = exc.detail.get("message")
        if isinstance(raw_code, str) and raw_code:
            code = raw_code
        if isinstance(raw_message, str) and raw_message:
            message = raw_message
        details = exc.detail.get("details")
    elif exc.detail is not None:
        details = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content=_build_error(code=code, message=message, details=details),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_build_error(
            code="VALIDATION_ERROR",
            message="Validation failed",
            details=exc.errors(),
        ),
    )


async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    for error_type, status_code, code in _LEDGER_ERRORS:
        if isinstance(exc, error_type):
            if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
                logger.error(
                    "ledger.backend.unavailable",
                    extra={"request_id": getattr(request.state, "request_id", None), "reason": str(exc)},
                )
            return JSONResponse(
                status_code=status_code,
                content=_build_error(code=code, message=str(exc) or code),
            )
    return await unhandled_exception_handler(request, exc)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        extra={"request_id": getattr(request.state, "request_id", None), "route": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_build_error(code="INTERNAL_ERROR", message="Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(LedgerError, ledger_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
