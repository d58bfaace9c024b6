import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import List, Optional

from feedforge.models.webhook import WebhookEventType, DEFAULT_EVENTS


class WebhookUpdate(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    enabled: bool = True
    events: List[str] = Field(default_factory=lambda: list(DEFAULT_EVENTS))
    secret: Optional[str] = Field(default=None, max_length=255)
    retry_count: Optional[int] = Field(default=None, ge=1, le=10)
    timeout_seconds: Optional[int] = Field(default=None, ge=1, le=300)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid url: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("events")
    @classmethod
    def _known_events(cls, value: List[str]) -> List[str]:
        known = {e.value for e in WebhookEventType}
        unknown = [e for e in value if e not in known]
        if unknown:
            raise ValueError(f"unknown events: {', '.join(unknown)}")
        # keep first occurrence order
        return list(dict.fromkeys(value))


class WebhookResponse(BaseModel):
    feed_id: str
    url: str
    enabled: bool
    events: List[str]
    has_secret: bool
    retry_count: int
    timeout_seconds: int
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    last_triggered_at: Optional[datetime] = None

    @classmethod
    def from_subscription(cls, sub) -> "WebhookResponse":
        return cls(
            feed_id=sub.feed_id,
            url=sub.url,
            enabled=sub.enabled,
            events=list(sub.events or []),
            has_secret=bool(sub.secret),
            retry_count=sub.retry_count,
            timeout_seconds=sub.timeout_seconds,
            total_deliveries=sub.total_deliveries,
            successful_deliveries=sub.successful_deliveries,
            failed_deliveries=sub.failed_deliveries,
            last_triggered_at=sub.last_triggered_at,
        )


class WebhookDeliveryResponse(BaseModel):
    id: int
    event_id: int
    event: str
    attempt: int
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    success: bool
    error_message: Optional[str] = None
    delivered_at: datetime

    model_config = ConfigDict(from_attributes=True)
