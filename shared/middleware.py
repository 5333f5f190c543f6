# shared/middleware.py
"""
Centralized middleware for the fortune service.
Provides request logging, request size limits, security headers and standardized error responses.
"""

import logging
import time
from typing import Any, Callable, Optional

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


def _error_envelope(
    status_code: int, message: Any, details: Optional[Any] = None
) -> JSONResponse:
    """Create standardized error response"""
    error_response = {
        "error": True,
        "message": message,
        "status_code": status_code,
        "timestamp": time.time(),
    }

    if details:
        error_response["details"] = details

    return JSONResponse(status_code=status_code, content=error_response)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware with:
    - Request size limits
    - Request/response logging with duration
    - Standardized error responses for unexpected failures
    """

    def __init__(
        self,
        app: ASGIApp,
        max_request_size: int = 64 * 1024,
        log_requests: bool = True,
    ):
        super().__init__(app)
        self.max_request_size = max_request_size
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._should_skip(request.url.path):
            return await call_next(request)

        start_time = time.time()

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_request_size:
            return _error_envelope(
                status_code=413,
                message=f"Request too large. Maximum size: {self.max_request_size} bytes",
                details={"max_size": self.max_request_size, "received_size": int(content_length)},
            )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"💥 UNHANDLED EXCEPTION {request.method} {request.url.path} ({duration_ms}ms): {e}",
                exc_info=True,
            )
            return _error_envelope(
                status_code=500,
                message="Internal server error",
                details={"error_type": type(e).__name__},
            )

        if self.log_requests:
            duration_ms = int((time.time() - start_time) * 1000)
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                f"{request.method} {request.url.path} - {response.status_code} ({duration_ms}ms)",
            )

        return response

    def _should_skip(self, path: str) -> bool:
        """Skip logging for noisy paths"""
        skip_paths = ["/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"]
        return any(path.startswith(skip_path) for skip_path in skip_paths)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses
    """

    def __init__(self, app: ASGIApp, service_name: str = "fortune"):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Service-Name"] = self.service_name

        # Fortunes are per-user and per-day, never let a shared cache keep them
        if request.url.path.startswith("/api"):
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"

        return response


def create_standard_error_handlers() -> dict[str, Callable]:
    """
    Create standardized error handlers for FastAPI apps
    """

    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        return _error_envelope(
            status_code=422,
            message="Validation error",
            details=jsonable_encoder(exc.errors()),
        )

    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions"""
        return _error_envelope(status_code=exc.status_code, message=exc.detail)

    return {
        "validation_exception_handler": validation_exception_handler,
        "http_exception_handler": http_exception_handler,
    }


def add_middleware_to_app(
    app,
    service_name: str,
    max_request_size: int = 64 * 1024,
    log_requests: bool = True,
):
    """
    Add all standard middleware to a FastAPI app

    Args:
        app: FastAPI application instance
        service_name: Name of the service (for headers and logging)
        max_request_size: Maximum request size in bytes
        log_requests: Whether to log requests
    """
    # Order matters - last added is executed first
    app.add_middleware(SecurityHeadersMiddleware, service_name=service_name)
    app.add_middleware(
        RequestLoggingMiddleware,
        max_request_size=max_request_size,
        log_requests=log_requests,
    )

    handlers = create_standard_error_handlers()
    app.add_exception_handler(RequestValidationError, handlers["validation_exception_handler"])
    app.add_exception_handler(StarletteHTTPException, handlers["http_exception_handler"])
