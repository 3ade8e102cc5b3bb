"""
Middleware modules for the CRM API.

Provides request processing middleware for:
- Correlation ID tracking for distributed tracing
- Log record context injection
"""

from .correlation import (
    CorrelationIdMiddleware,
    CorrelationLogFilter,
    correlation_id_ctx,
    request_id_ctx,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationLogFilter",
    "correlation_id_ctx",
    "request_id_ctx",
]
