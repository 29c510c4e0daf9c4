# relaybot/transport/middleware.py
"""
HTTP middleware for the FastAPI app.

Registered outermost first: RequestID -> RequestLogging -> ErrorHandling.
"""
import re
import time
import uuid
from typing import Callable, Iterable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from relaybot.infra.logging_config import get_logger, LogContext
from relaybot.infra.metrics import inc_counter

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
# Client-supplied ids end up in logs, so only short opaque tokens are kept
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# Webhook paths whose caller retries on non-2xx
ACK_PATHS = frozenset({"/webhooks/telegram"})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse a well-formed X-Request-ID or mint one; echo it on the response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _SAFE_REQUEST_ID.match(incoming) else uuid.uuid4().hex
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request; level follows the response status"""

    def __init__(self, app: ASGIApp, enabled: bool = True, skip_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.enabled = enabled
        self.skip_paths = frozenset(skip_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.enabled or path in self.skip_paths:
            return await call_next(request)

        log_ctx = LogContext(logger, request_id=_request_id(request))
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            log_ctx.error(
                f"Request failed: {request.method} {path} error={exc.__class__.__name__} "
                f"duration={(time.perf_counter() - started) * 1000:.2f}ms",
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        status = response.status_code
        message = f"Request completed: {request.method} {path} status={status} duration={duration_ms:.2f}ms"
        if status >= 500:
            log_ctx.error(message)
        elif status >= 400:
            log_ctx.warning(message)
        else:
            log_ctx.info(message)
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn unhandled exceptions into JSON; webhook paths still answer 200"""

    def __init__(self, app: ASGIApp, ack_paths: Iterable[str] = ACK_PATHS):
        super().__init__(app)
        self.ack_paths = frozenset(ack_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            path = request.url.path
            inc_counter("http_unhandled_errors_total", path=path)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled exception on {path}: {exc.__class__.__name__}: {exc}",
                exc_info=True,
            )

            # Redelivery would replay the same failing update
            if path in self.ack_paths:
                return JSONResponse(content={"ok": False}, status_code=200)

            return JSONResponse(
                content={"error": "Internal server error", "request_id": request_id},
                status_code=500,
            )
