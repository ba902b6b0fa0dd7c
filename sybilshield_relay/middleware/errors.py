from __future__ import annotations

"""
Exception -> RFC 7807 "problem+json" mappers for FastAPI.

- ``ApiError`` subclasses render their own kind/code/retryable fields.
- Starlette ``HTTPException`` keeps its status.
- ``RequestValidationError`` becomes a 400 validation problem.
- Anything else is a 500 ``internal`` problem. Exception type and message are
  included only when APP_ENV=development; the stack trace is only logged.

Every body carries ``instance`` (request path) and ``request_id``.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import KIND_INTERNAL, KIND_NOT_FOUND, KIND_VALIDATION, ApiError
from ..logging import get_logger

PROBLEM_CT = "application/problem+json"

log = get_logger(__name__)

_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    413: "Payload Too Large",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def _dev_mode(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_development)


def _with_request(request: Request, body: Dict[str, Any]) -> Dict[str, Any]:
    body.setdefault("instance", str(request.url.path))
    body.setdefault("request_id", getattr(request.state, "request_id", "") or "")
    return body


def _problem(
    request: Request,
    *,
    status: int,
    code: str,
    kind: str,
    detail: str,
    retryable: bool = False,
    extras: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": "about:blank",
        "title": _TITLES.get(status, "Error"),
        "status": status,
        "code": code,
        "kind": kind,
        "retryable": retryable,
        "detail": detail,
    }
    if extras:
        for k, v in extras.items():
            body.setdefault(k, v)
    return _with_request(request, body)


def _respond(body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=body["status"], content=body, headers=headers or None, media_type=PROBLEM_CT)


# --------------------------- Handlers ---------------------------


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    body = _with_request(request, exc.to_problem())
    fields = {k: body[k] for k in ("status", "code", "kind", "retryable", "detail", "instance")}
    if exc.status_code >= 500:
        log.error("api_error", **fields)
    else:
        log.warning("api_error", **fields)
    return _respond(body, exc.headers())


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status = int(exc.status_code)
    kind = KIND_NOT_FOUND if status == 404 else (KIND_INTERNAL if status >= 500 else KIND_VALIDATION)
    body = _problem(
        request,
        status=status,
        code=_TITLES.get(status, "error").lower().replace(" ", "_"),
        kind=kind,
        detail=str(exc.detail) if exc.detail else "",
    )
    (log.warning if status < 500 else log.error)("http_exception", status=status, instance=body["instance"])
    return _respond(body, getattr(exc, "headers", None))


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = _problem(
        request,
        status=400,
        code="validation_error",
        kind=KIND_VALIDATION,
        detail="Request validation failed",
        extras={"errors": jsonable_encoder(exc.errors())},
    )
    log.warning("validation_error", instance=body["instance"], errors=len(body["errors"]))
    return _respond(body)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    extras: Dict[str, Any] = {}
    if _dev_mode(request):
        extras = {"exc_type": type(exc).__name__, "exc": str(exc)}
    body = _problem(
        request,
        status=500,
        code="server_error",
        kind=KIND_INTERNAL,
        detail="An unexpected error occurred. Contact support with the request_id.",
        extras=extras,
    )
    log.exception("unhandled_exception", instance=body["instance"], request_id=body["request_id"])
    return _respond(body)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["install_error_handlers", "PROBLEM_CT"]
