"""
Monitoring Module
Exports for structured logging and circuit breakers
"""

from app.services.monitoring.logging import setup_logging, CorrelationJsonFormatter
from app.services.monitoring.circuit_breakers import (
    get_claude_breaker,
    get_mongodb_breaker,
    reset_breakers,
    CircuitBreakerError,
    CircuitBreakerLogListener,
)

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "get_claude_breaker",
    "get_mongodb_breaker",
    "reset_breakers",
    "CircuitBreakerError",
    "CircuitBreakerLogListener",
]
