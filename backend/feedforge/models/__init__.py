# SQLAlchemy models
from feedforge.models.product import Product, Availability
from feedforge.models.feed import (
    Feed,
    FeedChannel,
    FeedFormat,
    FeedStatus,
    CHANNEL_FORMATS,
    LOCKABLE_STATUSES,
    is_supported_combination,
)
from feedforge.models.generation_history import GenerationHistory, GenerationStatus
from feedforge.models.feed_schedule import FeedSchedule, ALLOWED_INTERVAL_HOURS, AUTO_PAUSE_THRESHOLD
from feedforge.models.webhook import (
    WebhookSubscription,
    WebhookEvent,
    WebhookDelivery,
    WebhookEventType,
    OutboxStatus,
    DEFAULT_EVENTS,
)

__all__ = [
    "Product",
    "Feed",
    "GenerationHistory",
    "FeedSchedule",
    "WebhookSubscription",
    "WebhookEvent",
    "WebhookDelivery",
    # Enums
    "Availability",
    "FeedChannel",
    "FeedFormat",
    "FeedStatus",
    "GenerationStatus",
    "WebhookEventType",
    "OutboxStatus",
    # Constants
    "CHANNEL_FORMATS",
    "LOCKABLE_STATUSES",
    "ALLOWED_INTERVAL_HOURS",
    "AUTO_PAUSE_THRESHOLD",
    "DEFAULT_EVENTS",
    "is_supported_combination",
]
