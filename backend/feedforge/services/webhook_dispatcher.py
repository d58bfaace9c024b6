"""
Outbound webhook delivery.

The pipeline writes ``WebhookEvent`` rows (the outbox) in the same transaction
as its final history write. ``WebhookDispatcher.dispatch_due`` runs on an
APScheduler interval: it claims due events, POSTs them, journals every
attempt in ``webhook_deliveries`` and reschedules failures with exponential
backoff until the subscription's ``retry_count`` is exhausted.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from feedforge.config import get_settings
from feedforge.database import SessionLocal
from feedforge.errors import DispatchError
from feedforge.models.webhook import OutboxStatus, WebhookDelivery, WebhookEvent, WebhookSubscription
from feedforge.utils.clock import isoformat_utc, utcnow
from feedforge.utils.version import get_version

logger = logging.getLogger(__name__)


def encode_payload(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def feed_event_payload(event: str, feed, timestamp: datetime, **fields) -> dict:
    """
    Build a webhook body. Key order is part of the wire format:
    event, feed_id, feed_name, channel, format, then the event fields, then timestamp.
    """
    payload = {
        "event": event,
        "feed_id": feed.feed_id,
        "feed_name": feed.name,
        "channel": feed.channel,
        "format": feed.format,
    }
    payload.update(fields)
    payload["timestamp"] = isoformat_utc(timestamp)
    return payload


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def enqueue_feed_event(db: Session, feed_id: str, event: str, payload: dict,
                       now: Optional[datetime] = None) -> list[WebhookEvent]:
    """Add outbox rows for the feed's subscription. Caller owns the commit."""
    subscriptions = db.query(WebhookSubscription).filter(WebhookSubscription.feed_id == feed_id).all()
    body = encode_payload(payload)
    queued = []
    for subscription in subscriptions:
        row = WebhookEvent(
            subscription_id=subscription.id,
            feed_id=feed_id,
            event=event,
            payload=body,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=now or utcnow(),
        )
        db.add(row)
        queued.append(row)
    return queued


def backoff_delay(attempt: int, base_seconds: float) -> timedelta:
    """Delay before attempt ``attempt + 1``: base * 2^(attempt-1)."""
    return timedelta(seconds=base_seconds * (2 ** (attempt - 1)))


@dataclass
class DeliveryJob:
    """Snapshot of one claimed outbox row, safe to use outside the session."""
    event_id: int
    subscription_id: int
    feed_id: str
    event: str
    payload: str
    attempt: int
    url: str
    secret: Optional[str]
    timeout_seconds: int
    retry_count: int


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        backoff_base_s: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory or SessionLocal
        self.transport = transport
        self.clock = clock
        self.backoff_base_s = settings.webhook_backoff_base_s if backoff_base_s is None else backoff_base_s
        self.max_concurrency = max_concurrency or settings.webhook_max_concurrency
        self.batch_size = batch_size or settings.webhook_batch_size
        self.user_agent = f"feedforge-webhooks/{get_version()}"
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                transport=self.transport,
                timeout=get_settings().webhook_default_timeout_s,
                follow_redirects=False,
            )
        return self._http_client

    async def close(self):
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def dispatch_due(self, now: Optional[datetime] = None) -> int:
        """Deliver every outbox event due at ``now``. Returns the number of attempts made."""
        jobs = self._claim_due(now or self.clock())
        if not jobs:
            return 0

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(job: DeliveryJob):
            async with semaphore:
                await self._deliver(job)

        await asyncio.gather(*(run(job) for job in jobs))
        return len(jobs)

    def _claim_due(self, now: datetime) -> list[DeliveryJob]:
        db = self.session_factory()
        try:
            due = (
                db.query(WebhookEvent)
                .filter(
                    WebhookEvent.status == OutboxStatus.PENDING.value,
                    WebhookEvent.next_attempt_at <= now,
                )
                .order_by(WebhookEvent.next_attempt_at, WebhookEvent.id)
                .limit(self.batch_size)
                .all()
            )

            jobs = []
            for row in due:
                subscription = db.get(WebhookSubscription, row.subscription_id)
                if subscription is None or not subscription.accepts(row.event):
                    row.status = OutboxStatus.DROPPED.value
                    row.completed_at = now
                    logger.debug(f"Dropped webhook event {row.id} ({row.event}) for feed {row.feed_id}")
                    continue

                row.status = OutboxStatus.IN_FLIGHT.value
                jobs.append(DeliveryJob(
                    event_id=row.id,
                    subscription_id=subscription.id,
                    feed_id=row.feed_id,
                    event=row.event,
                    payload=row.payload,
                    attempt=row.attempts + 1,
                    url=subscription.url,
                    secret=subscription.secret,
                    timeout_seconds=subscription.timeout_seconds,
                    retry_count=subscription.retry_count,
                ))
            db.commit()
            return jobs
        finally:
            db.close()

    async def _post(self, job: DeliveryJob) -> int:
        """POST one attempt. Returns the status code or raises DispatchError."""
        body = job.payload.encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Feed-Event": job.event,
            "X-Feed-Delivery-Attempt": str(job.attempt),
        }
        if job.secret:
            headers["X-Signature"] = sign_payload(job.secret, body)

        client = await self._get_client()
        try:
            response = await client.post(job.url, content=body, headers=headers, timeout=job.timeout_seconds)
        except httpx.TimeoutException as e:
            raise DispatchError(f"Timed out after {job.timeout_seconds}s: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            raise DispatchError(f"Transport error: {e.__class__.__name__}: {e}") from e
        except Exception as e:
            # InvalidURL and friends are not HTTPError subclasses
            raise DispatchError(f"Request error: {e.__class__.__name__}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DispatchError(f"HTTP {response.status_code}", status_code=response.status_code)
        return response.status_code

    async def _deliver(self, job: DeliveryJob):
        started = time.monotonic()
        status_code = None
        error_message = None
        try:
            status_code = await self._post(job)
        except DispatchError as e:
            status_code = e.response_status
            error_message = e.message
        elapsed_ms = int((time.monotonic() - started) * 1000)

        try:
            self._record_attempt(job, status_code, elapsed_ms, error_message)
        except SQLAlchemyError:
            logger.exception(f"Could not journal webhook event {job.event_id}; returning it to the queue")
            self._release(job)

    def _record_attempt(self, job: DeliveryJob, status_code: Optional[int],
                        elapsed_ms: int, error_message: Optional[str]):
        success = error_message is None
        delivered_at = self.clock()

        db = self.session_factory()
        try:
            db.add(WebhookDelivery(
                subscription_id=job.subscription_id,
                event_id=job.event_id,
                feed_id=job.feed_id,
                event=job.event,
                payload=job.payload,
                attempt=job.attempt,
                status_code=status_code,
                response_time_ms=elapsed_ms,
                success=success,
                error_message=error_message,
                delivered_at=delivered_at,
            ))

            row = db.get(WebhookEvent, job.event_id)
            subscription = db.get(WebhookSubscription, job.subscription_id)
            row.attempts = job.attempt
            subscription.total_deliveries = (subscription.total_deliveries or 0) + 1
            subscription.last_triggered_at = delivered_at

            if success:
                row.status = OutboxStatus.DELIVERED.value
                row.last_error = None
                row.completed_at = delivered_at
                subscription.successful_deliveries = (subscription.successful_deliveries or 0) + 1
                logger.info(f"✅ Webhook {job.event} for feed {job.feed_id} delivered (attempt {job.attempt}, HTTP {status_code})")
            elif job.attempt < job.retry_count:
                row.status = OutboxStatus.PENDING.value
                row.last_error = error_message
                row.next_attempt_at = delivered_at + backoff_delay(job.attempt, self.backoff_base_s)
                logger.warning(
                    f"Webhook {job.event} for feed {job.feed_id} failed (attempt {job.attempt}/{job.retry_count}): "
                    f"{error_message}; retrying at {row.next_attempt_at}"
                )
            else:
                row.status = OutboxStatus.FAILED.value
                row.last_error = error_message
                row.completed_at = delivered_at
                subscription.failed_deliveries = (subscription.failed_deliveries or 0) + 1
                logger.error(
                    f"❌ Webhook {job.event} for feed {job.feed_id} gave up after {job.attempt} attempt(s): {error_message}"
                )

            db.commit()
        finally:
            db.close()

    def _release(self, job: DeliveryJob):
        db = self.session_factory()
        try:
            db.query(WebhookEvent).filter(
                WebhookEvent.id == job.event_id,
                WebhookEvent.status == OutboxStatus.IN_FLIGHT.value,
            ).update({WebhookEvent.status: OutboxStatus.PENDING.value}, synchronize_session=False)
            db.commit()
        except SQLAlchemyError:
            logger.exception(f"Could not release webhook event {job.event_id}; it is requeued on restart")
        finally:
            db.close()

    def requeue_in_flight(self) -> int:
        """Return events claimed by a process that died mid-delivery to the queue."""
        db = self.session_factory()
        try:
            count = (
                db.query(WebhookEvent)
                .filter(WebhookEvent.status == OutboxStatus.IN_FLIGHT.value)
                .update({WebhookEvent.status: OutboxStatus.PENDING.value}, synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
        if count:
            logger.info(f"Requeued {count} in-flight webhook event(s)")
        return count


_global_dispatcher: Optional[WebhookDispatcher] = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    global _global_dispatcher
    if _global_dispatcher is None:
        _global_dispatcher = WebhookDispatcher()
    return _global_dispatcher


async def shutdown_dispatcher():
    """Close the global dispatcher's HTTP client."""
    global _global_dispatcher
    if _global_dispatcher is not None:
        await _global_dispatcher.close()
        _global_dispatcher = None
