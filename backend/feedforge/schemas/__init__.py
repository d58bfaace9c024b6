from feedforge.schemas.feed import (
    FilterSpec,
    Transformations,
    FeedSettings,
    FeedCreate,
    FeedUpdate,
    FeedResponse,
    GenerationHistoryResponse,
    RegenerateResponse,
)
from feedforge.schemas.schedule import ScheduleUpdate, ScheduleResponse, RunScheduledResponse
from feedforge.schemas.webhook import WebhookUpdate, WebhookResponse, WebhookDeliveryResponse

__all__ = [
    "FilterSpec",
    "Transformations",
    "FeedSettings",
    "FeedCreate",
    "FeedUpdate",
    "FeedResponse",
    "GenerationHistoryResponse",
    "RegenerateResponse",
    "ScheduleUpdate",
    "ScheduleResponse",
    "RunScheduledResponse",
    "WebhookUpdate",
    "WebhookResponse",
    "WebhookDeliveryResponse",
]
