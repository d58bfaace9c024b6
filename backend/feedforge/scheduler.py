"""
APScheduler wiring for the in-process timers.

Two interval jobs: the feed schedule tick (selects due feeds and hands them to
the generation worker pool) and the webhook outbox poll. Both can also be
driven externally; ``POST /feeds/run-scheduled`` calls the same tick.
"""

import logging
import os
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore

from feedforge.config import get_settings
from feedforge.services.feed_scheduler import get_feed_scheduler
from feedforge.services.webhook_dispatcher import get_webhook_dispatcher

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

settings = get_settings()


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        tz = os.environ.get('TZ', 'UTC')
        logger.info(f"Scheduler using timezone: {tz}")

        scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            timezone=tz
        )
        _setup_scheduled_jobs()

    return scheduler


def _setup_scheduled_jobs():
    scheduler.add_job(
        feed_schedule_tick,
        trigger=IntervalTrigger(seconds=settings.scheduler_tick_seconds),
        id='feed_schedule_tick',
        name='Feed Schedule Tick',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        webhook_dispatch,
        trigger=IntervalTrigger(seconds=settings.webhook_poll_seconds),
        id='webhook_dispatch',
        name='Webhook Dispatch',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Feed schedule tick: every {settings.scheduler_tick_seconds}s")
    logger.info(f"  - Webhook dispatch: every {settings.webhook_poll_seconds}s")


async def feed_schedule_tick():
    """Dispatch due feeds; runs continue in the worker pool after the tick returns."""
    try:
        await get_feed_scheduler().tick()
    except Exception as e:
        logger.error(f"Error in feed schedule tick: {e}")


async def webhook_dispatch():
    try:
        attempts = await get_webhook_dispatcher().dispatch_due()
        if attempts:
            logger.info(f"Webhook dispatch: {attempts} attempt(s)")
    except Exception as e:
        logger.error(f"Error in webhook dispatch: {e}")


def start_scheduler():
    """Start the scheduler (call this from FastAPI startup)."""
    scheduler_instance = get_scheduler()

    if not scheduler_instance.running:
        scheduler_instance.start()
        logger.info("APScheduler started successfully")

        for job in scheduler_instance.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """Stop the scheduler (call this from FastAPI shutdown)."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")
        scheduler = None


def get_scheduler_status() -> dict:
    """Get scheduler status for the status endpoint."""
    if scheduler is None or not scheduler.running:
        return {
            "running": False,
            "jobs": [],
            "next_run": None
        }

    jobs = []
    next_run = None

    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "func": job.func.__name__ if job.func else None
        })
        if job.next_run_time and (next_run is None or job.next_run_time < next_run):
            next_run = job.next_run_time

    return {
        "running": True,
        "jobs": jobs,
        "next_run": next_run.isoformat() if next_run else None
    }
