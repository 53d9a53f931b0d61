"""FastAPI middleware for correlation IDs and request logging."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from hlsforge.core.logging import clear_correlation_id, set_correlation_id

logger = logging.getLogger("hlsforge.requests")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Propagates X-Correlation-ID from request to logs and response."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(self.CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per completed request and a stack trace per failed one.

    The tusd hook endpoint is hit for every upload chunk event, so it is
    logged at DEBUG.
    """

    QUIET_PATH_SUFFIXES = ("/hooks/tus", "/health")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        path = request.url.path
        level = logging.DEBUG if path.endswith(self.QUIET_PATH_SUFFIXES) else logging.INFO

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": path,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        logger.log(
            level,
            "Request completed",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response


__all__ = [
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
]
