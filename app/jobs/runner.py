# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""APScheduler wiring for the periodic standup jobs."""
from apscheduler.schedulers.background import BackgroundScheduler

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

JOB_DEFAULTS = {"replace_existing": True, "max_instances": 1, "coalesce": True}


def build_scheduler(scheduler_job, reminder_job, digest_job, dedup_store) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    # Aligned to the minute so a standup at HH:MM is materialised on time.
    scheduler.add_job(
        scheduler_job.run, trigger="cron", second=0, id="standup-scheduler", **JOB_DEFAULTS
    )
    for job_id, func, seconds in (
        ("standup-reminders", reminder_job.run, settings.REMINDER_TICK_SECONDS),
        ("standup-digests", digest_job.run, settings.DIGEST_TICK_SECONDS),
        ("dedup-purge", dedup_store.purge_expired, settings.DEDUP_PURGE_SECONDS),
    ):
        scheduler.add_job(func, trigger="interval", seconds=seconds, id=job_id, **JOB_DEFAULTS)
    logger.info("Background jobs registered count=%d", len(scheduler.get_jobs()))
    return scheduler
