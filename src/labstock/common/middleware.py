"""
Request tracing for the ledger API.

Every request gets a ``trace_id`` (from ``X-Request-ID`` or a fresh uuid)
and, when the calling workflow sends one, an ``operation_ref`` from
``X-Operation-Ref``. Both are bound to the structlog context, so receipt,
consumption and allocation events logged while serving the request carry
them, and both are echoed back on the response.
"""

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response

logger = structlog.get_logger("labstock.middleware")

REQUEST_ID_HEADER = "X-Request-ID"
OPERATION_REF_HEADER = "X-Operation-Ref"

QUIET_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

MAX_HEADER_VALUE_LENGTH = 64


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the socket peer, else "unknown"."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return str(request.client.host)
    return "unknown"


def _clip(header: str, value: str) -> str:
    if len(value) > MAX_HEADER_VALUE_LENGTH:
        logger.warning(
            "request_header_truncated",
            header=header,
            original_length=len(value),
            truncated_to=MAX_HEADER_VALUE_LENGTH,
        )
    return value[:MAX_HEADER_VALUE_LENGTH]


def _bind_request_context(request: Request) -> dict[str, str]:
    echoed = {
        REQUEST_ID_HEADER: _clip(
            REQUEST_ID_HEADER, request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        )
    }
    context = {
        "trace_id": echoed[REQUEST_ID_HEADER],
        "client_ip": get_client_ip(request),
        "method": request.method,
        "path": request.url.path,
    }
    operation_ref = request.headers.get(OPERATION_REF_HEADER)
    if operation_ref:
        echoed[OPERATION_REF_HEADER] = _clip(OPERATION_REF_HEADER, operation_ref)
        context["operation_ref"] = echoed[OPERATION_REF_HEADER]
    structlog.contextvars.bind_contextvars(**context)
    return echoed


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def request_tracing_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    echoed = _bind_request_context(request)
    loud = request.url.path not in QUIET_PATHS
    started = time.perf_counter()

    try:
        if loud:
            logger.debug("http_request_started")
        response = await call_next(request)
    except Exception as exc:
        logger.error(
            "http_request_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            duration_ms=_elapsed_ms(started),
            exc_info=True,
        )
        raise
    else:
        if loud:
            logger.info(
                "http_request_finished",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )
        response.headers.update(echoed)
        return response
    finally:
        structlog.contextvars.clear_contextvars()


def setup_logging_middleware(app: FastAPI) -> None:
    app.middleware("http")(request_tracing_middleware)
