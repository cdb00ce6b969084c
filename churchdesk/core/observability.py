import json
import logging
import time
import traceback
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from churchdesk.core.config import settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
app_logger = logging.getLogger("churchdesk")
logger = logging.getLogger("churchdesk.api")

_STATUS_CODE_MAP = {
    400: "bad_request",
    401: "unauthorized",
    404: "not_found",
    422: "validation_error",
}


def setup_observability() -> None:
    # churchdesk.api, churchdesk.automation and churchdesk.integrations share this handler.
    if app_logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    app_logger.addHandler(handler)
    app_logger.setLevel(logging.INFO)
    app_logger.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(target: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Write one JSON line tagged with the current request id."""
    payload = {"event": event, "request_id": fields.pop("request_id", None) or get_request_id(), **fields}
    target.log(level, json.dumps(payload, default=str))


def _request_id_for(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )


def _error_response(
    *,
    status_code: int,
    request: Request,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": _request_id_for(request),
                "path": request.url.path,
                "details": details,
            }
        },
    )


def plain_error_response(*, status_code: int, request: Request, message: str) -> JSONResponse:
    """Flat ``{"error": message}`` body used by the trigger dispatch ingress."""
    log_event(
        logger,
        "request_rejected",
        level=logging.WARNING,
        request_id=_request_id_for(request),
        path=request.url.path,
        status_code=status_code,
        error=message,
    )
    return JSONResponse(status_code=status_code, content={"error": message})


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        log_event(
            logger,
            "request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        request_id_ctx.reset(token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-API-Timeout-Hint-Ms"] = str(settings.api_timeout_hint_ms)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        logger,
        "unhandled_exception",
        level=logging.ERROR,
        request_id=_request_id_for(request),
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(limit=10),
    )
    return _error_response(
        status_code=500,
        request=request,
        code="internal_error",
        message="Internal server error",
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    code = _STATUS_CODE_MAP.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=code,
        message=message,
        details=details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part != "body"]
        details.append(
            {
                "field": ".".join(location) if location else "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )

    return _error_response(
        status_code=422,
        request=request,
        code="validation_error",
        message="Validation failed",
        details=details,
    )
