"""
Dramatiq Worker Entrypoint

This module serves as the entry point for Dramatiq workers.
It imports all actor modules to register them with the broker and builds
the MongoDB store and matching engine once for the worker process.

Usage:
    dramatiq app.worker --processes 1 --threads 2 --verbose

Procfile Configuration:
    worker: dramatiq app.worker --processes 1 --threads 2 --verbose

Batch runs are I/O-bound (Claude calls, MongoDB queries), so threads are
the cheaper way to run more than one at a time.
"""

import structlog

from app.actors import broker
from app.database import init_services
from app.services.monitoring import setup_logging

setup_logging()
logger = structlog.get_logger()

# Services are shared by every actor invocation in this process
store, engine = init_services()

# Worker health check log
logger.info("worker_ready",
            broker=type(broker).__name__,
            mongodb_available=store.is_available(),
            scorer=type(engine.scorer).__name__)
