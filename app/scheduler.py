"""
APScheduler Background Jobs

Scheduled maintenance jobs (expired idempotency record cleanup).
Jobs run via BackgroundScheduler in the FastAPI process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

logger = structlog.get_logger(__name__)


def run_idempotency_cleanup():
    """
    Wrapper function for the scheduled idempotency cleanup job.

    Deletes idempotency records past expires_at so the table stays bounded.
    Never raises: a crashed run is logged and the next run tries again.
    """
    try:
        from app.database import SessionLocal
        from app.services.idempotency import IdempotencyCoordinator

        if SessionLocal is None:
            logger.warning("idempotency_cleanup_skipped", reason="database_not_configured")
            return

        coordinator = IdempotencyCoordinator.from_settings(SessionLocal)
        deleted_count = coordinator.cleanup_expired()
        logger.info("idempotency_cleanup_completed", deleted_count=deleted_count)

    except Exception as e:
        logger.error("idempotency_cleanup_crashed", error=str(e), exc_info=True)


def start_scheduler(environment: str = "production") -> BackgroundScheduler:
    """
    Create, configure and start the background scheduler.

    Args:
        environment: Deployment environment; "testing" registers no jobs and
            leaves the scheduler stopped

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    interval_minutes = settings.idempotency_cleanup_interval_minutes
    scheduler.add_job(
        run_idempotency_cleanup,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="idempotency_cleanup",
        name="Expired Idempotency Record Cleanup",
        replace_existing=True
    )
    logger.info("job_registered", job="idempotency_cleanup", interval_minutes=interval_minutes)

    scheduler.start()
    logger.info("scheduler_started", jobs=["idempotency_cleanup"])

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
    "run_idempotency_cleanup",
]
