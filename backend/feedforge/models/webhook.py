from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from feedforge.database import Base
import enum


class WebhookEventType(str, enum.Enum):
    FEED_GENERATED = "feed.generated"
    FEED_FAILED = "feed.failed"
    # Reserved; nothing emits it yet.
    FEED_VALIDATED = "feed.validated"


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"
    DROPPED = "dropped"


DEFAULT_EVENTS = [WebhookEventType.FEED_GENERATED.value, WebhookEventType.FEED_FAILED.value]


class WebhookSubscription(Base):
    """Per-feed webhook target with event filter, retry policy and delivery counters."""
    __tablename__ = "webhook_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    feed_id = Column(
        String(36),
        ForeignKey("feeds.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    url = Column(String(2048), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    events = Column(JSON, default=lambda: list(DEFAULT_EVENTS))
    secret = Column(String(255), nullable=True)

    retry_count = Column(Integer, default=3, nullable=False)
    timeout_seconds = Column(Integer, default=30, nullable=False)

    total_deliveries = Column(Integer, default=0, nullable=False)
    successful_deliveries = Column(Integer, default=0, nullable=False)
    failed_deliveries = Column(Integer, default=0, nullable=False)
    last_triggered_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    feed = relationship("Feed", back_populates="webhook")

    def accepts(self, event: str) -> bool:
        return bool(self.enabled) and event in (self.events or [])

    def __repr__(self) -> str:
        return f"<WebhookSubscription {self.id}: feed={self.feed_id} -> {self.url}>"


class WebhookEvent(Base):
    """
    Durable outbound queue entry: one logical event for one subscription.

    Inserted in the same transaction as the generation history write, so an
    event is never lost for a run that completed. ``attempts`` counts journal
    rows written so far.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(
        Integer,
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feed_id = Column(String(36), nullable=False, index=True)
    event = Column(String(50), nullable=False)
    payload = Column(Text, nullable=False)

    status = Column(String(16), default=OutboxStatus.PENDING.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    next_attempt_at = Column(DateTime, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_webhook_events_due", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.id}: {self.event} sub={self.subscription_id} {self.status}>"


class WebhookDelivery(Base):
    """Append-only journal: one row per delivery attempt."""
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(
        Integer,
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id = Column(Integer, ForeignKey("webhook_events.id", ondelete="CASCADE"), nullable=False, index=True)
    feed_id = Column(String(36), nullable=False, index=True)

    event = Column(String(50), nullable=False)
    payload = Column(Text, nullable=True)
    attempt = Column(Integer, nullable=False)

    status_code = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)

    delivered_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "attempt", name="uix_delivery_event_attempt"),
    )

    def __repr__(self) -> str:
        result = "ok" if self.success else "failed"
        return f"<WebhookDelivery {self.id}: event={self.event_id} attempt={self.attempt} {result}>"
