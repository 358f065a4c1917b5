"""
Request middleware — logging, timing, correlation IDs, acting user.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • Structured log entry per request
    • Acting user (X-User-ID, set by the upstream auth gateway) in log context
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from pawmesh.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-ID"
REQUEST_ID_HEADER = "X-Request-ID"

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing, inject correlation ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path

        set_request_context(
            request_id=request_id,
            user_id=request.headers.get(USER_HEADER),
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms)",
                request.method, path, duration_ms,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            # Cap rejections and duplicate reports are routine 4xx traffic
            log_level = logging.ERROR if response.status_code >= 500 else logging.INFO
            logger.log(
                log_level,
                "%s %s → %d (%.1fms)",
                request.method, path, response.status_code, duration_ms,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_request_context()

        return response
