"""
Rate Limiting

Per-user request limits backed by slowapi. Counters live in the storage
named by RATE_LIMIT_STORAGE_URI (memory:// for a single process, redis://
when several API processes share the limits).
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.settings import settings


def get_identifier(request: Request) -> str:
    """
    Rate limit key: authenticated user when known, otherwise client IP.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_identifier,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage_uri
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Rate limit errors in the API's error envelope."""
    response = JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded: {exc.detail}"
            }
        }
    )
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


def setup_rate_limiting(app: FastAPI):
    """
    Set up rate limiting for the application.

    Args:
        app: FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
