"""
Logging Middleware

Request/response logging with a correlation id per request.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("bidvet.api.requests")

CORRELATION_HEADER = "X-Correlation-ID"
QUIET_PATHS = {"/health"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with method, path, status and duration.

    An incoming X-Correlation-ID is reused so a client (or the worker that
    enqueued the job) can tie its logs to ours; otherwise a short one is
    generated. Both the id and the timing are echoed as response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex[:8]
        request.state.correlation_id = correlation_id
        quiet = request.url.path in QUIET_PATHS

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        if not quiet:
            logger.info(f"[{correlation_id}] {request.method} {request.url.path} from {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"[{correlation_id}] {request.method} {request.url.path} "
                f"ERROR: {str(e)} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.DEBUG if quiet else logging.INFO
        user_id = getattr(request.state, "user_id", None)
        logger.log(
            level,
            f"[{correlation_id}] {request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.2f}ms){f' user={user_id}' if user_id else ''}"
        )
        return response


def get_correlation_id(request: Request) -> str:
    """Get the correlation ID from the request state."""
    return getattr(request.state, "correlation_id", "unknown")
