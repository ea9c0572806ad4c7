"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that injects the request correlation ID into every
stdlib log entry, and routes structlog events through the same handler
"""

import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id

from app.config import settings

SERVICE_NAME = "lost-found-matcher"


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Adds to every record:
    - correlation_id: From async context or 'none' outside a request
    - service: Application name for multi-service environments
    - environment: Deployment environment (development/production)
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = settings.environment


def configure_structlog():
    """
    Configure structlog for JSON event logging.

    Shared by the API process, the dramatiq worker and scripts.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    )


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout.

    Sets up the root logger with CorrelationJsonFormatter so stdlib logging
    calls (circuit breakers, third-party libraries) come out as JSON with a
    correlation_id, and configures structlog for service events.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    configure_structlog()

    return handler
