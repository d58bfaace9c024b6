from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func

from feedforge.api.deps import get_scheduler_service
from feedforge.database import get_db
from feedforge.models import Feed, FeedSchedule, WebhookEvent, OutboxStatus
from feedforge.scheduler import get_scheduler_status
from feedforge.services.feed_scheduler import FeedScheduler
from feedforge.utils.version import get_version

router = APIRouter()


@router.get("/status")
async def service_status(
    db: Session = Depends(get_db),
    feed_scheduler: FeedScheduler = Depends(get_scheduler_service),
):
    """
    Operational snapshot:
    - APScheduler jobs and next run times
    - feeds by status and generation runs currently in flight
    - schedules auto-paused after repeated failures
    - webhook outbox backlog
    """
    feeds_by_status = {
        status.value if hasattr(status, "value") else status: count
        for status, count in db.query(Feed.status, func.count(Feed.id)).group_by(Feed.status).all()
    }

    paused_schedules = db.query(FeedSchedule).filter(
        FeedSchedule.enabled == False,
        FeedSchedule.consecutive_failures > 0,
    ).count()

    pending_webhooks = db.query(WebhookEvent).filter(
        WebhookEvent.status.in_([OutboxStatus.PENDING.value, OutboxStatus.IN_FLIGHT.value])
    ).count()

    return {
        "version": get_version(),
        "scheduler": get_scheduler_status(),
        "feeds": feeds_by_status,
        "runs_in_flight": feed_scheduler.in_flight,
        "auto_paused_schedules": paused_schedules,
        "pending_webhook_events": pending_webhooks,
    }
