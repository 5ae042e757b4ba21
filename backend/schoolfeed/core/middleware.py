"""
SchoolFeed - HTTP Middleware
Request/Response logging, timing, and context management
"""

import time
from typing import Callable, Set

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from schoolfeed.core.logging_config import (
    logger,
    set_request_id,
    set_user_id,
    generate_request_id,
)

USER_ID_HEADER = "X-User-Id"

# Paths that should skip detailed logging
SKIP_LOGGING_PATHS: Set[str] = {
    "/health",
    "/api/v1/health",
    "/",
    "/favicon.ico",
    "/docs",
    "/redoc",
    "/openapi.json",
}


def should_skip_logging(path: str) -> bool:
    return path in SKIP_LOGGING_PATHS


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its duration.

    - Tracks request IDs for correlation (X-Request-ID in and out)
    - Puts the caller identity (X-User-Id) into the logging context
    - Adds X-Response-Time to responses
    """

    def __init__(self, app: ASGIApp, slow_request_ms: float = 1000):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)
        set_user_id(request.headers.get(USER_ID_HEADER, ""))

        path = request.url.path
        skip_logging = should_skip_logging(path)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.log_error_with_context(
                exc,
                context=f"{request.method} {path}",
                duration_ms=duration_ms,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        if not skip_logging:
            logger.log_request(request.method, path, response.status_code, duration_ms)
            if duration_ms > self.slow_request_ms:
                logger.warning(
                    f"Slow request: {request.method} {path} took {duration_ms:.2f}ms",
                    extra={
                        "event_type": "slow_request",
                        "http_method": request.method,
                        "http_path": path,
                        "duration_ms": duration_ms,
                    }
                )

        return response
