"""
Batch Matching Actor
Dramatiq actor that runs a batch matching pass on the worker
"""

from typing import Dict, List, Optional

import dramatiq
import structlog
from pymongo.errors import PyMongoError

from app.services.exceptions import MatchingError, StoreUnavailableError
from app.services.monitoring.circuit_breakers import CircuitBreakerError

logger = structlog.get_logger()

MAX_RETRIES = 3


def should_retry(retries_so_far: int, exception: Exception) -> bool:
    """
    Determine if a failed batch run should be retried.

    Retryable (transient):
    - StoreUnavailableError, PyMongoError, CircuitBreakerError
    - ConnectionError, TimeoutError

    Non-retryable (permanent):
    - Any other MatchingError (empty item sets, bad input)
    - ValueError, KeyError (programming errors)
    """
    retryable_types = (StoreUnavailableError, PyMongoError, CircuitBreakerError, ConnectionError, TimeoutError)

    if isinstance(exception, retryable_types):
        will_retry = retries_so_far < MAX_RETRIES
        logger.info("retryable_exception",
                    exception_type=type(exception).__name__,
                    retries=retries_so_far,
                    will_retry=will_retry)
        return will_retry

    if isinstance(exception, (MatchingError, ValueError, KeyError)):
        logger.info("non_retryable_exception",
                    exception_type=type(exception).__name__,
                    retries=retries_so_far)
        return False

    logger.warning("unknown_exception_type",
                   exception_type=type(exception).__name__,
                   retries=retries_so_far)
    return retries_so_far < MAX_RETRIES


@dramatiq.actor(
    max_retries=MAX_RETRIES,
    min_backoff=15000,  # 15 seconds
    max_backoff=300000,  # 5 minutes
    time_limit=3600000,  # 1 hour; a full batch makes one Claude call per new pair
    retry_when=should_retry,
    queue_name="batch_matching"
)
def run_batch_matching(
    min_score: Optional[float] = None,
    categories: Optional[List[str]] = None,
    correlation_id: Optional[str] = None
) -> Dict:
    """
    Run batch matching across active lost and found items.

    Re-delivery after a crash is safe: pairs that already have a match are
    skipped before scoring.

    Args:
        min_score: Minimum score to persist a match (default: configured)
        categories: Optional category allow-list
        correlation_id: Correlation ID of the request that enqueued the run

    Returns:
        Batch run statistics as a dict

    Example:
        >>> run_batch_matching.send(min_score=40, categories=["Electronics"])
    """
    from app.database import get_services
    from app.middleware.correlation_id import bind_correlation_id
    from app.services.exceptions import EmptyItemSetError

    bind_correlation_id(correlation_id)
    log = logger.bind(min_score=min_score, categories=categories)
    log.info("batch_job_started")

    _, engine = get_services()
    try:
        stats = engine.run_batch(min_score=min_score, categories=categories)
    except EmptyItemSetError as e:
        log.info("batch_job_skipped", reason=str(e))
        return {"status": "skipped", "reason": str(e)}

    log.info("batch_job_completed",
             matches_created=stats.matches_created,
             pairs_failed=stats.pairs_failed)
    return {"status": "completed", **stats.to_dict()}
