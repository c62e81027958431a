"""APScheduler configuration for pipeline maintenance jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from simpipe.config import settings

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")


async def cleanup_old_jobs(pipeline, retention_days: int = None):
    """
    Delete terminal jobs older than the retention horizon.

    Queued and processing jobs are never removed, whatever their age.
    """
    retention_days = retention_days or settings.JOB_RETENTION_DAYS
    try:
        logger.info(f"Starting job retention sweep ({retention_days} days)...")
        deleted = await pipeline.queue.sweep_retention(retention_days)
        logger.info(f"Retention sweep complete. Deleted {deleted} old jobs")
        return deleted
    except Exception as e:
        logger.error(f"Error in retention sweep: {e}")
        return 0


async def cleanup_result_cache(pipeline):
    """Remove expired result cache entries."""
    try:
        return await pipeline.cache.cleanup_expired()
    except Exception as e:
        logger.error(f"Error cleaning result cache: {e}")
        return 0


async def sweep_stuck_jobs(pipeline):
    """Fail jobs that have been processing for too long."""
    try:
        return await pipeline.workers.sweep_stuck_jobs()
    except Exception as e:
        logger.error(f"Error sweeping stuck jobs: {e}")
        return 0


async def purge_reference_caches(pipeline):
    """Drop expired benchmark and competitor cache entries."""
    try:
        purged = pipeline.purge_reference_caches()
        if purged:
            logger.info(f"Purged {purged} expired reference cache entries")
        return purged
    except Exception as e:
        logger.error(f"Error purging reference caches: {e}")
        return 0


def start_scheduler(pipeline):
    """
    Initialize and start the APScheduler.

    Jobs:
    - Job retention sweep: RETENTION_SCHEDULE (default daily at 02:00 UTC)
    - Result cache cleanup: hourly
    - Stuck-job sweep: every minute
    - Reference cache purge: hourly
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    try:
        scheduler.add_job(
            cleanup_old_jobs,
            trigger=CronTrigger.from_crontab(settings.RETENTION_SCHEDULE, timezone="UTC"),
            args=[pipeline],
            id='simulation_retention',
            name='Simulation Job Retention',
            replace_existing=True,
            max_instances=1
        )
        logger.info(f"✅ Scheduled: Simulation Job Retention ({settings.RETENTION_SCHEDULE})")

        scheduler.add_job(
            cleanup_result_cache,
            trigger=CronTrigger(minute=15),
            args=[pipeline],
            id='result_cache_cleanup',
            name='Result Cache Cleanup',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Result Cache Cleanup (hourly)")

        scheduler.add_job(
            sweep_stuck_jobs,
            trigger=IntervalTrigger(minutes=1),
            args=[pipeline],
            id='stuck_job_sweep',
            name='Stuck Job Sweep',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Stuck Job Sweep (every minute)")

        scheduler.add_job(
            purge_reference_caches,
            trigger=CronTrigger(minute=45),
            args=[pipeline],
            id='reference_cache_purge',
            name='Reference Cache Purge',
            replace_existing=True,
            max_instances=1
        )
        logger.info("✅ Scheduled: Reference Cache Purge (hourly)")

        scheduler.start()
        logger.info("✅ APScheduler started successfully!")

        for job in scheduler.get_jobs():
            logger.info(f"   • {job.name}: Next run at {job.next_run_time}")

    except Exception as e:
        logger.error(f"❌ Error starting scheduler: {e}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
