from __future__ import annotations

"""
Exception -> RFC7807 "problem+json" mappers for FastAPI.

- GitStreamError subclasses keep their own status code and ``kind``.
- Starlette HTTPException and request-validation errors get the same body shape.
- Anything else is a 500 that never leaks internals; the traceback is logged.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import GitStreamError
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
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    502: "Bad Gateway",
    504: "Gateway Timeout",
}


def _problem(
    request: Request,
    *,
    status: int,
    title: Optional[str] = None,
    detail: str = "",
    code: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": "about:blank",
        "title": title or _TITLES.get(status, "Error"),
        "status": status,
        "detail": detail,
        "instance": str(request.url.path),
    }
    if code:
        body["code"] = code
    for k, v in (extras or {}).items():
        body.setdefault(k, v)
    return body


async def _handle_gitstream_error(request: Request, exc: GitStreamError) -> JSONResponse:
    body = exc.to_problem()
    body["instance"] = str(request.url.path)
    if exc.status_code >= 500:
        log.error("api_error", kind=exc.kind, detail=exc.message, path=body["instance"])
    else:
        log.warning("api_error", kind=exc.kind, detail=exc.message, path=body["instance"])
    return JSONResponse(status_code=exc.status_code, content=body, media_type=PROBLEM_CT)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status = int(exc.status_code)
    body = _problem(request, status=status, detail=str(exc.detail or ""))
    (log.warning if status < 500 else log.error)("http_exception", status=status, path=body["instance"])
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_CT)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = _problem(
        request,
        status=422,
        detail="Request validation failed.",
        code="validation_error",
        extras={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]},
    )
    log.warning("request_validation_error", path=body["instance"])
    return JSONResponse(status_code=422, content=body, media_type=PROBLEM_CT)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    body = _problem(request, status=500, detail="An unexpected error occurred.", code="server_error")
    log.exception("unhandled_exception", path=body["instance"])
    return JSONResponse(status_code=500, content=body, media_type=PROBLEM_CT)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GitStreamError, _handle_gitstream_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["install_error_handlers", "PROBLEM_CT"]
