"""
Correlation ID Middleware
Request-scoped correlation IDs for API requests and the batch jobs they enqueue
"""

from typing import Optional

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
import structlog

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "bind_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from async context.

    Returns:
        str: The correlation ID or 'none' outside a request
    """
    return correlation_id.get() or 'none'


def bind_correlation_id(value: Optional[str]):
    """
    Restore a correlation ID inside a worker or scheduler job.

    The request context is gone by the time a queued batch runs, so the
    router passes the ID along with the message and the actor binds it
    here for both stdlib and structlog output.
    """
    if not value or value == 'none':
        return
    correlation_id.set(value)
    structlog.contextvars.bind_contextvars(correlation_id=value)
