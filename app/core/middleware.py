"""
Request logging and error handling middleware.
"""
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.errors import build_error_payload
from app.core.logging import get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Reuse incoming IDs when present
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        correlation_id = request.headers.get("X-Correlation-ID") or request_id
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, correlation_id=correlation_id)

        start_time = time.time()
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", method=request.method, path=request.url.path, error=str(e))
            raise

        duration = time.time() - start_time
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for handling errors and returning proper responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except StaleDataError as e:
            # Another writer committed a newer version of the same lead
            logger.warning("lead_conflict", method=request.method, path=request.url.path, error=str(e))
            return JSONResponse(
                status_code=409,
                content={"detail": build_error_payload(
                    code="lead_conflict",
                    message="The lead was modified by someone else. Reload and try again.",
                    request=request,
                )},
            )
        except Exception as e:
            logger.exception("unhandled_error", method=request.method, path=request.url.path, error=str(e))
            return JSONResponse(
                status_code=500,
                content={"detail": build_error_payload(
                    code="internal_error",
                    message="Internal server error",
                    detail=str(e) if getattr(request.app.state, "debug", False) else "An error occurred",
                    request=request,
                )},
            )
