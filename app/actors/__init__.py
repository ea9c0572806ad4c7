"""
Dramatiq Actors - Background Batch Matching

Batch runs are queued here when a caller asks for background=true, so the
HTTP request returns before hundreds of Claude calls complete.

Broker selection:
- RedisBroker when REDIS_URL is set (worker runs as a separate process)
- StubBroker otherwise (tests, local runs without Redis)

Usage:
    from app.actors import broker, run_batch_matching
"""

from typing import Optional

import dramatiq
from dramatiq.brokers.stub import StubBroker
import structlog

from app.config import settings

logger = structlog.get_logger()

BROKER_NAMESPACE = "lost_found_matcher"


def setup_broker(redis_url: Optional[str] = None) -> dramatiq.Broker:
    """
    Create the broker and make it the global dramatiq broker.

    Args:
        redis_url: Redis connection URL (default: settings.redis_url)

    Returns:
        RedisBroker or StubBroker
    """
    redis_url = redis_url or settings.redis_url

    if redis_url:
        from dramatiq.brokers.redis import RedisBroker

        broker = RedisBroker(
            url=redis_url,
            namespace=BROKER_NAMESPACE,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            dead_message_ttl=86400000  # Keep failed batch messages one day
        )
    else:
        broker = StubBroker()

    dramatiq.set_broker(broker)
    logger.info("broker_configured", type=type(broker).__name__, namespace=BROKER_NAMESPACE)
    return broker


broker = setup_broker()

# Actor modules register with the broker on import
from app.actors.batch_matcher import run_batch_matching  # noqa: F401,E402

__all__ = ["broker", "setup_broker", "run_batch_matching"]
