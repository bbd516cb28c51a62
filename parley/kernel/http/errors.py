from __future__ import annotations

from enum import Enum
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, Response

from parley.auth.errors import AuthErrorKind
from parley.kernel.errors import ParleyError, RequestErrorKind
from parley.kernel.time import isoformat_z, utc_now
from parley.llm.errors import ProviderErrorKind
from parley.sessions.errors import SessionErrorKind

logger = structlog.get_logger()

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"
VALIDATION_ERROR_CODE = RequestErrorKind.VALIDATION.value

ERROR_KINDS: tuple[type[Enum], ...] = (
    RequestErrorKind,
    AuthErrorKind,
    SessionErrorKind,
    ProviderErrorKind,
)

_STATUS_BY_KIND: dict[Enum, int] = {
    RequestErrorKind.VALIDATION: 400,
    AuthErrorKind.AUTHENTICATION_REQUIRED: 401,
    AuthErrorKind.ACCESS_DENIED: 403,
    SessionErrorKind.NOT_FOUND: 404,
    SessionErrorKind.ACCESS_DENIED: 403,
    SessionErrorKind.PERSISTENCE_FAILED: 500,
    ProviderErrorKind.UNAVAILABLE: 502,
    ProviderErrorKind.REJECTED: 502,
    ProviderErrorKind.TIMEOUT: 504,
}

_missing = [member for kinds in ERROR_KINDS for member in kinds if member not in _STATUS_BY_KIND]
if _missing:
    raise RuntimeError(f"Error kinds without an HTTP status: {_missing}")


def status_for(error: ParleyError) -> int:
    return _STATUS_BY_KIND[error.kind]


def _get_request_id(conn: HTTPConnection) -> str | None:
    return getattr(getattr(conn, "state", None), "request_id", None)


def error_envelope(
    conn: HTTPConnection,
    *,
    code: str,
    message: str,
    status: int,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Uniform error body returned for every failure at the HTTP boundary."""
    payload: dict[str, Any] = {
        "code": code,
        "message": message,
        "status": status,
        "path": conn.url.path,
        "timestamp": isoformat_z(utc_now()),
    }
    request_id = _get_request_id(conn)
    if request_id:
        payload["request_id"] = request_id
    if meta:
        payload["meta"] = meta
    return payload


def envelope_for(conn: HTTPConnection, error: ParleyError) -> dict[str, Any]:
    return error_envelope(
        conn,
        code=error.code,
        message=error.message,
        status=status_for(error),
        meta=error.meta,
    )


def error_response(conn: HTTPConnection, error: ParleyError) -> JSONResponse:
    return JSONResponse(status_code=status_for(error), content=envelope_for(conn, error))


def register_exception_handlers(app: FastAPI) -> None:
    """Register Parley-wide exception handlers on a FastAPI app."""

    @app.exception_handler(ParleyError)
    async def _parley_error_handler(request: Request, exc: ParleyError) -> Response:
        return error_response(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> Response:
        status = int(exc.status_code)
        payload = error_envelope(
            request,
            code=f"HTTP_{status}",
            message=exc.detail if isinstance(exc.detail, str) else "Request failed",
            status=status,
        )
        headers = dict(exc.headers or {})
        return JSONResponse(status_code=status, content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        field_errors = {
            ".".join(str(part) for part in err.get("loc", ()) if part != "body"): err.get("msg", "")
            for err in exc.errors()
        }
        payload = error_envelope(
            request,
            code=VALIDATION_ERROR_CODE,
            message="Request validation failed",
            status=400,
            meta={"field_errors": field_errors},
        )
        return JSONResponse(status_code=400, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        logger.exception("Unhandled exception", request_id=_get_request_id(request), error=str(exc))
        payload = error_envelope(
            request,
            code=INTERNAL_ERROR_CODE,
            message="Internal Server Error",
            status=500,
        )
        return JSONResponse(status_code=500, content=payload)
