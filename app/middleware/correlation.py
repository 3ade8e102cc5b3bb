"""
Correlation ID middleware.

Every request gets a correlation ID (client session) and a request ID, both
echoed in response headers and exposed through context variables so log
records and problem documents can carry them.

Headers:
- X-Correlation-ID: Session-level ID from the client (persists across requests)
- X-Request-ID: Per-request unique identifier
"""

import uuid
import logging
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def generate_id() -> str:
    """Generate a short unique ID suitable for logging."""
    return str(uuid.uuid4())[:12]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reads or assigns correlation/request IDs and returns them as headers."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or generate_id()
        request_id = request.headers.get("X-Request-ID") or generate_id()

        correlation_id_ctx.set(correlation_id)
        request_id_ctx.set(request_id)
        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Request-ID"] = request_id
        return response


def get_correlation_id() -> str:
    """Get the current correlation ID from context."""
    return correlation_id_ctx.get() or "unknown"


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_ctx.get() or "unknown"


class CorrelationLogFilter(logging.Filter):
    """Injects correlation and request IDs into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.request_id = get_request_id()
        return True
