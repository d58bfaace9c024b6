"""Schedule and webhook configuration, plus the external scheduler tick."""
from fastapi import APIRouter, Depends, HTTPException, Query

from feedforge.api.deps import get_feed_service, get_scheduler_service
from feedforge.schemas.schedule import RunScheduledResponse, ScheduleResponse, ScheduleUpdate
from feedforge.schemas.webhook import WebhookDeliveryResponse, WebhookResponse, WebhookUpdate
from feedforge.services.feed_scheduler import FeedScheduler
from feedforge.services.feed_service import FeedService

router = APIRouter(prefix="/feeds", tags=["automation"])


@router.post("/run-scheduled", response_model=RunScheduledResponse)
async def run_scheduled(scheduler: FeedScheduler = Depends(get_scheduler_service)):
    """External cron entry point. Always 200; individual run failures land on the schedules."""
    dispatched = await scheduler.tick()
    return RunScheduledResponse(dispatched=dispatched)


@router.get("/{feed_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(feed_id: str, service: FeedService = Depends(get_feed_service)):
    schedule = service.get_schedule(feed_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Feed has no schedule")
    return schedule


@router.put("/{feed_id}/schedule", response_model=ScheduleResponse)
async def put_schedule(feed_id: str, data: ScheduleUpdate, service: FeedService = Depends(get_feed_service)):
    return service.put_schedule(feed_id, data)


@router.get("/{feed_id}/webhook", response_model=WebhookResponse)
async def get_webhook(feed_id: str, service: FeedService = Depends(get_feed_service)):
    subscription = service.get_webhook(feed_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Feed has no webhook")
    return WebhookResponse.from_subscription(subscription)


@router.put("/{feed_id}/webhook", response_model=WebhookResponse)
async def put_webhook(feed_id: str, data: WebhookUpdate, service: FeedService = Depends(get_feed_service)):
    return WebhookResponse.from_subscription(service.put_webhook(feed_id, data))


@router.get("/{feed_id}/webhook/deliveries", response_model=list[WebhookDeliveryResponse])
async def list_deliveries(
    feed_id: str,
    limit: int = Query(100, ge=1, le=1000),
    service: FeedService = Depends(get_feed_service),
):
    return service.list_deliveries(feed_id, limit=limit)
