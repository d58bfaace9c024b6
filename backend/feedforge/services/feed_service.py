"""Control-plane operations behind the HTTP routes: feed, schedule and webhook configuration."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from feedforge.config import get_settings
from feedforge.errors import ArtifactNotFound, ConfigError, FeedNotFound
from feedforge.models.feed import Feed, FeedStatus, is_supported_combination
from feedforge.models.feed_schedule import FeedSchedule
from feedforge.models.generation_history import GenerationHistory, GenerationStatus
from feedforge.models.webhook import WebhookDelivery, WebhookSubscription
from feedforge.schemas.feed import FeedCreate, FeedSettings, FeedUpdate
from feedforge.schemas.schedule import ScheduleUpdate
from feedforge.schemas.webhook import WebhookUpdate
from feedforge.services.artifact_store import ArtifactStore
from feedforge.utils.clock import utcnow

logger = logging.getLogger(__name__)


class FeedService:
    def __init__(self, db: Session, artifact_store: Optional[ArtifactStore] = None):
        self.db = db
        self.artifact_store = artifact_store or ArtifactStore()

    def get_feed(self, feed_id: str) -> Feed:
        # pipeline runs update feeds from their own sessions
        feed = self.db.get(Feed, feed_id, populate_existing=True)
        if feed is None:
            raise FeedNotFound(f"Feed {feed_id} not found")
        return feed

    def create_feed(self, data: FeedCreate) -> Feed:
        if not is_supported_combination(data.channel, data.format):
            raise ConfigError(
                f"Unsupported channel/format combination: {data.channel.value}/{data.format.value}",
                code="unsupported_channel_format",
            )
        if data.status == FeedStatus.GENERATING:
            raise ConfigError("Status 'generating' is managed by the pipeline")
        settings = FeedSettings.from_raw(data.settings)

        feed = Feed(
            tenant_id=data.tenant_id,
            name=data.name,
            channel=data.channel,
            format=data.format,
            status=data.status,
            settings=settings.to_raw(),
        )
        self.db.add(feed)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConfigError(f"Feed '{data.name}' already exists for tenant {data.tenant_id}",
                              code="duplicate_feed") from e
        self.db.refresh(feed)
        logger.info(f"Created feed {feed.id} ({feed.channel.value}) for tenant {feed.tenant_id}")
        return feed

    def update_feed(self, feed_id: str, data: FeedUpdate) -> Feed:
        self.get_feed(feed_id)
        values = {}
        if data.status is not None:
            if data.status == FeedStatus.GENERATING:
                raise ConfigError("Status 'generating' is managed by the pipeline")
            values[Feed.status] = data.status
        if data.settings is not None:
            values[Feed.settings] = FeedSettings.from_raw(data.settings).to_raw()
        if data.name is not None:
            values[Feed.name] = data.name
        if not values:
            return self.get_feed(feed_id)

        query = self.db.query(Feed).filter(Feed.id == feed_id)
        if data.status is not None:
            # a run may take the lock between the read above and this write
            query = query.filter(Feed.status != FeedStatus.GENERATING)
        try:
            updated = query.update(values, synchronize_session=False)
            if not updated:
                self.db.rollback()
                raise ConfigError(f"Feed {feed_id} is generating; try again when the run finishes",
                                  code="feed_busy")
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConfigError(f"Feed '{data.name}' already exists", code="duplicate_feed") from e
        return self.get_feed(feed_id)

    def list_history(self, feed_id: str, limit: int = 50) -> list[GenerationHistory]:
        self.get_feed(feed_id)
        return (
            self.db.query(GenerationHistory)
            .filter(GenerationHistory.feed_id == feed_id)
            .order_by(GenerationHistory.started_at.desc(), GenerationHistory.id.desc())
            .limit(limit)
            .all()
        )

    def latest_artifact(self, feed_id: str) -> tuple[Feed, bytes]:
        """Bytes of the newest successful run; ArtifactNotFound if the feed never generated."""
        feed = self.get_feed(feed_id)
        latest = (
            self.db.query(GenerationHistory)
            .filter(
                GenerationHistory.feed_id == feed_id,
                GenerationHistory.status == GenerationStatus.SUCCESS.value,
                GenerationHistory.artifact_ref.isnot(None),
            )
            .order_by(GenerationHistory.id.desc())
            .first()
        )
        if latest is None:
            raise ArtifactNotFound(f"Feed {feed_id} has not been generated yet")
        return feed, self.artifact_store.read(latest.artifact_ref)

    # Schedule

    def get_schedule(self, feed_id: str) -> Optional[FeedSchedule]:
        self.get_feed(feed_id)
        return (
            self.db.query(FeedSchedule)
            .filter(FeedSchedule.feed_id == feed_id)
            .populate_existing()
            .first()
        )

    def put_schedule(self, feed_id: str, data: ScheduleUpdate, now: Optional[datetime] = None) -> FeedSchedule:
        now = now or utcnow()
        schedule = self.get_schedule(feed_id)

        if schedule is None:
            schedule = FeedSchedule(
                feed_id=feed_id,
                enabled=data.enabled,
                interval_hours=data.interval_hours,
                consecutive_failures=0,
                next_run_at=data.next_run_at or now + FeedSchedule.interval_for(data.interval_hours),
            )
            self.db.add(schedule)
        else:
            if data.interval_hours != schedule.interval_hours:
                schedule.interval_hours = data.interval_hours
                schedule.next_run_at = now + schedule.interval
            if data.next_run_at is not None:
                schedule.next_run_at = data.next_run_at
            if data.enabled and not schedule.enabled:
                schedule.enable(now)
                logger.info(f"Schedule for feed {feed_id} re-enabled")
            elif not data.enabled:
                schedule.enabled = False

        self.db.commit()
        self.db.refresh(schedule)
        return schedule

    # Webhook

    def get_webhook(self, feed_id: str) -> Optional[WebhookSubscription]:
        self.get_feed(feed_id)
        return (
            self.db.query(WebhookSubscription)
            .filter(WebhookSubscription.feed_id == feed_id)
            .populate_existing()
            .first()
        )

    def put_webhook(self, feed_id: str, data: WebhookUpdate) -> WebhookSubscription:
        settings = get_settings()
        subscription = self.get_webhook(feed_id)
        if subscription is None:
            subscription = WebhookSubscription(
                feed_id=feed_id,
                total_deliveries=0,
                successful_deliveries=0,
                failed_deliveries=0,
            )
            self.db.add(subscription)

        subscription.url = data.url
        subscription.enabled = data.enabled
        subscription.events = list(data.events)
        subscription.secret = data.secret
        subscription.retry_count = data.retry_count or settings.webhook_default_retries
        subscription.timeout_seconds = data.timeout_seconds or settings.webhook_default_timeout_s

        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def list_deliveries(self, feed_id: str, limit: int = 100) -> list[WebhookDelivery]:
        self.get_feed(feed_id)
        return (
            self.db.query(WebhookDelivery)
            .filter(WebhookDelivery.feed_id == feed_id)
            .order_by(WebhookDelivery.id.desc())
            .limit(limit)
            .all()
        )
