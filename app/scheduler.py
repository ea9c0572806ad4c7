"""
APScheduler Background Jobs

Periodic batch matching in the FastAPI process. Disabled when
batch_interval_minutes is 0.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger(__name__)


def run_scheduled_batch():
    """
    Wrapper function for the scheduled batch matching job.

    Pairs scored by an earlier run are skipped by the deduplicator, so each
    run only pays for items reported since the last one.
    """
    from app.database import get_services
    from app.services.exceptions import EmptyItemSetError

    try:
        _, engine = get_services()
        stats = engine.run_batch()
        logger.info("scheduled_batch_completed",
                    matches_created=stats.matches_created,
                    pairs_scored=stats.pairs_scored,
                    pairs_failed=stats.pairs_failed)

    except EmptyItemSetError as e:
        logger.info("scheduled_batch_skipped", reason=str(e))
    except Exception as e:
        logger.error("scheduled_batch_crashed", error=str(e), exc_info=True)


def start_scheduler(environment: str = "production", interval_minutes: int = 0) -> BackgroundScheduler:
    """
    Start background scheduler with the batch matching job.

    Args:
        environment: Current environment (skip scheduler in testing)
        interval_minutes: Minutes between batch runs (0 disables the job)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    if interval_minutes <= 0:
        logger.info("scheduler_skipped", reason="batch_interval_not_configured")
        return scheduler

    scheduler.add_job(
        run_scheduled_batch,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="periodic_batch_matching",
        name="Periodic Lost/Found Batch Matching",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )
    logger.info("job_registered", job="batch_matching", interval_minutes=interval_minutes)

    scheduler.start()
    logger.info("scheduler_started", jobs=["batch_matching"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_scheduled_batch",
]
