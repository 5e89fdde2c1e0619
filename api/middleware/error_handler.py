"""
Error Handler Middleware

Global error handling for consistent API responses:
{"error": {"code": ..., "message": ...}}
"""

import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.middleware.logging import get_correlation_id

from services.exceptions import (
    BidVetError,
    UnsupportedFormat,
    SourceUnavailable,
    ExtractionFailed,
    LLMError,
    RateLimitError,
    NotFound,
    Forbidden,
    ValidationError,
    ConflictError,
)

logger = logging.getLogger("bidvet.api.errors")


# Most specific first
STATUS_CODES = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UnsupportedFormat, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (ExtractionFailed, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SourceUnavailable, status.HTTP_502_BAD_GATEWAY),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (LLMError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: BidVetError) -> int:
    """HTTP status for a domain error."""
    for error_type, code in STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(code: str, message, **extra) -> dict:
    return {"error": {"code": code, "message": message, **extra}}


def setup_error_handlers(app: FastAPI):
    """
    Set up global error handlers for the application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(BidVetError)
    async def domain_error_handler(request: Request, exc: BidVetError):
        """Map the pipeline's error taxonomy onto HTTP."""
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(f"[{get_correlation_id(request)}] {request.method} {request.url.path}: {exc.code} - {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=error_body(exc.code, exc.message)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("HTTP_ERROR", exc.detail),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body("VALIDATION_ERROR", "Request validation failed", details=errors)
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(f"[{get_correlation_id(request)}] Unhandled exception: {str(exc)}")
        logger.error(traceback.format_exc())

        from config.settings import settings

        message = str(exc) if settings.api_env == "development" else "An internal error occurred"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", message)
        )
