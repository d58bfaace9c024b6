"""
Feed generation pipeline.

    begin()   take the per-feed lock (guarded UPDATE on feeds.status) and
              open a ``running`` history row
    execute() stream catalog -> filter -> serializer -> artifact store, then
              finalize history, feed and webhook outbox in one transaction

``run()`` is both steps. Only ``ConfigError``, ``FeedNotFound`` and
``ConcurrentGenerationInProgress`` escape to callers; everything that goes
wrong after the lock is taken is recorded on the history row instead.
"""
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from feedforge.config import get_settings
from feedforge.database import SessionLocal
from feedforge.errors import (
    ConcurrentGenerationInProgress,
    ConfigError,
    FeedForgeError,
    FeedNotFound,
    GenerationError,
    GenerationTimeout,
    SerializationError,
    SourceError,
    StorageError,
)
from feedforge.models.feed import Feed, FeedStatus, LOCKABLE_STATUSES
from feedforge.models.generation_history import GenerationHistory, GenerationStatus
from feedforge.models.webhook import WebhookEventType
from feedforge.schemas.feed import FeedSettings
from feedforge.services.artifact_store import ArtifactStore
from feedforge.services.catalog import CatalogSource
from feedforge.services.filter_engine import FilterStats, apply_filter
from feedforge.services.serializers import FeedContext, SerializeStats, get_serializer
from feedforge.services.webhook_dispatcher import enqueue_feed_event, feed_event_payload
from feedforge.utils.clock import utcnow

logger = logging.getLogger(__name__)

ABANDONED = "abandoned"


@dataclass
class GenerationRun:
    """Handle for a run whose lock is held and whose history row exists."""
    run_id: int
    feed_id: str
    trigger: str
    started_at: datetime


@dataclass
class GenerationResult:
    run_id: int
    feed_id: str
    status: str
    products_processed: int = 0
    products_included: int = 0
    products_excluded: int = 0
    generation_time_ms: int = 0
    file_size_bytes: int = 0
    artifact_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    exclusion_reasons: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == GenerationStatus.SUCCESS.value


@dataclass
class PreviewResult:
    content: bytes
    media_type: str
    products_included: int
    filter_stats: FilterStats


class GenerationPipeline:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        artifact_store: Optional[ArtifactStore] = None,
        deadline_s: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        base_url: Optional[str] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory or SessionLocal
        self.artifact_store = artifact_store or ArtifactStore()
        self.deadline_s = settings.pipeline_deadline_s if deadline_s is None else deadline_s
        self.clock = clock
        self.base_url = settings.base_url if base_url is None else base_url

    # Lock

    def begin(self, feed_id: str, trigger: str = "manual") -> GenerationRun:
        """Validate the feed, take its generation lock and open a history row."""
        db = self.session_factory()
        try:
            feed = db.get(Feed, feed_id)
            if feed is None:
                raise FeedNotFound(f"Feed {feed_id} not found")

            FeedSettings.from_raw(feed.settings)
            get_serializer(feed.channel, feed.format)

            if feed.status == FeedStatus.INACTIVE:
                raise ConfigError(f"Feed {feed_id} is inactive", code="feed_inactive")

            locked = (
                db.query(Feed)
                .filter(Feed.id == feed_id, Feed.status.in_(LOCKABLE_STATUSES))
                .update({Feed.status: FeedStatus.GENERATING}, synchronize_session=False)
            )
            if locked != 1:
                db.rollback()
                current = db.get(Feed, feed_id, populate_existing=True)
                if current is None:
                    raise FeedNotFound(f"Feed {feed_id} not found")
                if current.status == FeedStatus.GENERATING:
                    raise ConcurrentGenerationInProgress(f"Feed {feed_id} is already generating")
                raise ConfigError(
                    f"Feed {feed_id} cannot generate from status {current.status.value}",
                    code="feed_inactive",
                )

            started_at = self.clock()
            history = GenerationHistory(
                feed_id=feed_id,
                status=GenerationStatus.RUNNING.value,
                trigger=trigger,
                started_at=started_at,
            )
            db.add(history)
            db.commit()
            logger.info(f"Generation lock taken for feed {feed_id} (run {history.id}, {trigger})")
            return GenerationRun(run_id=history.id, feed_id=feed_id, trigger=trigger, started_at=started_at)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    # Run

    def run(self, feed_id: str, trigger: str = "manual") -> GenerationResult:
        return self.execute(self.begin(feed_id, trigger))

    def execute(self, run: GenerationRun) -> GenerationResult:
        """Produce the artifact for a begun run and release its lock. Never raises for in-run failures."""
        started = time.monotonic()
        deadline = started + self.deadline_s
        result = GenerationResult(run_id=run.run_id, feed_id=run.feed_id, status=GenerationStatus.FAILED.value)
        filter_stats = FilterStats()
        serialize_stats = SerializeStats()
        context = None
        error: Optional[FeedForgeError] = None

        db = self.session_factory()
        try:
            feed = db.get(Feed, run.feed_id)
            if feed is None:
                raise FeedNotFound(f"Feed {run.feed_id} disappeared during generation")
            settings = FeedSettings.from_raw(feed.settings)
            serializer = get_serializer(feed.channel, feed.format)

            source = CatalogSource(db)
            try:
                generated_at = source.snapshot_at(feed.tenant_id) or feed.created_at or run.started_at
            except SQLAlchemyError as e:
                raise SourceError(f"Catalog read failed: {e}") from e
            context = FeedContext.from_feed(feed, generated_at, self.base_url, settings.transformations)

            products = self._guard_source(source.stream(feed.tenant_id), deadline)
            filtered = apply_filter(products, settings.filter)
            filter_stats = filtered.stats
            chunks = self._guard_serializer(serializer.stream(context, filtered, serialize_stats))
            artifact = self.artifact_store.save(run.feed_id, run.run_id, serializer.extension, chunks)

            result.status = GenerationStatus.SUCCESS.value
            result.artifact_ref = artifact.ref
        except FeedForgeError as e:
            error = e
        except SQLAlchemyError as e:
            error = StorageError(f"Database error during generation: {e}")
        except Exception as e:
            logger.exception(f"Unexpected failure generating feed {run.feed_id}")
            error = GenerationError(f"{e.__class__.__name__}: {e}")
        finally:
            db.close()

        result.products_processed = filter_stats.processed
        result.products_included = filter_stats.included
        result.products_excluded = filter_stats.excluded
        result.exclusion_reasons = dict(filter_stats.reasons)
        result.file_size_bytes = serialize_stats.file_size_bytes
        result.generation_time_ms = int((time.monotonic() - started) * 1000)
        if error is not None:
            result.status = GenerationStatus.FAILED.value
            result.error_code = error.code
            result.error_message = error.message
            result.file_size_bytes = 0
            result.artifact_ref = None
            logger.error(f"❌ Feed {run.feed_id} run {run.run_id} failed [{error.code}]: {error.message}")

        self._finish(run, result, context)
        return result

    def _guard_source(self, products: Iterable, deadline: float) -> Iterator:
        iterator = iter(products)
        while True:
            if time.monotonic() >= deadline:
                raise GenerationTimeout(f"Generation exceeded {self.deadline_s}s deadline")
            try:
                product = next(iterator)
            except StopIteration:
                return
            except GenerationError:
                raise
            except Exception as e:
                raise SourceError(f"Catalog read failed: {e}") from e
            yield product

    @staticmethod
    def _guard_serializer(chunks: Iterator[bytes]) -> Iterator[bytes]:
        iterator = iter(chunks)
        while True:
            try:
                chunk = next(iterator)
            except StopIteration:
                return
            except GenerationError:
                raise
            except Exception as e:
                raise SerializationError(f"Serialization failed: {e.__class__.__name__}: {e}") from e
            yield chunk

    def _finish(self, run: GenerationRun, result: GenerationResult, context: Optional[FeedContext]):
        """Write history, feed status and outbox rows together; retry once on a storage failure."""
        for attempt in (1, 2):
            db = self.session_factory()
            try:
                history = db.get(GenerationHistory, run.run_id)
                feed = db.get(Feed, run.feed_id)
                if history is None or feed is None:
                    logger.warning(f"Feed {run.feed_id} or run {run.run_id} vanished before finalization")
                    return

                completed_at = self.clock()
                history.status = result.status
                history.products_processed = result.products_processed
                history.products_included = result.products_included
                history.products_excluded = result.products_excluded
                history.generation_time_ms = result.generation_time_ms
                history.file_size_bytes = result.file_size_bytes
                history.artifact_ref = result.artifact_ref
                history.error_code = result.error_code
                history.error_message = result.error_message
                history.completed_at = completed_at

                snapshot = context or FeedContext.from_feed(feed, completed_at)
                if result.succeeded:
                    feed.status = FeedStatus.ACTIVE
                    feed.last_generated_at = completed_at
                    feed.products_count = result.products_included
                    event = WebhookEventType.FEED_GENERATED.value
                    payload = feed_event_payload(
                        event, snapshot, completed_at,
                        products_included=result.products_included,
                        products_excluded=result.products_excluded,
                        generation_time_ms=result.generation_time_ms,
                        file_size_bytes=result.file_size_bytes,
                    )
                else:
                    feed.status = FeedStatus.ERROR
                    event = WebhookEventType.FEED_FAILED.value
                    payload = feed_event_payload(
                        event, snapshot, completed_at, error_message=result.error_message,
                    )

                enqueue_feed_event(db, run.feed_id, event, payload, now=completed_at)
                db.commit()
                logger.info(
                    f"Feed {run.feed_id} run {run.run_id} {result.status}: "
                    f"processed={result.products_processed} included={result.products_included} "
                    f"excluded={result.products_excluded} bytes={result.file_size_bytes} "
                    f"in {result.generation_time_ms}ms; exclusions={result.exclusion_reasons}"
                )
                return
            except SQLAlchemyError as e:
                db.rollback()
                if attempt == 1:
                    logger.warning(f"History write for run {run.run_id} failed, retrying: {e}")
                    continue
                logger.error(
                    f"History write for run {run.run_id} failed twice; feed {run.feed_id} "
                    f"stays locked until reconciliation: {e}"
                )
                result.status = GenerationStatus.FAILED.value
                result.error_code = StorageError.code
                result.error_message = f"History write failed: {e}"
            finally:
                db.close()

    # Preview

    def preview(self, feed_id: str, max_products: int = 100) -> PreviewResult:
        """Filter and serialize up to ``max_products`` accepted products without persisting anything."""
        db = self.session_factory()
        try:
            feed = db.get(Feed, feed_id)
            if feed is None:
                raise FeedNotFound(f"Feed {feed_id} not found")
            settings = FeedSettings.from_raw(feed.settings)
            serializer = get_serializer(feed.channel, feed.format)

            source = CatalogSource(db)
            generated_at = source.snapshot_at(feed.tenant_id) or feed.created_at or self.clock()
            context = FeedContext.from_feed(feed, generated_at, self.base_url, settings.transformations)

            filtered = apply_filter(source.stream(feed.tenant_id), settings.filter)
            content, stats = serializer.serialize(context, itertools.islice(filtered, max_products))
            return PreviewResult(
                content=content,
                media_type=serializer.content_type,
                products_included=stats.products_included,
                filter_stats=filtered.stats,
            )
        finally:
            db.close()

    # Startup

    def reconcile_abandoned(self) -> int:
        """Release locks and close history rows left behind by a crashed process."""
        db = self.session_factory()
        try:
            now = self.clock()
            feeds = (
                db.query(Feed)
                .filter(Feed.status == FeedStatus.GENERATING)
                .update({Feed.status: FeedStatus.ERROR}, synchronize_session=False)
            )
            runs = (
                db.query(GenerationHistory)
                .filter(GenerationHistory.status == GenerationStatus.RUNNING.value)
                .update(
                    {
                        GenerationHistory.status: GenerationStatus.FAILED.value,
                        GenerationHistory.error_code: ABANDONED,
                        GenerationHistory.error_message: ABANDONED,
                        GenerationHistory.completed_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        finally:
            db.close()

        if feeds or runs:
            logger.warning(f"Reconciled {feeds} stuck feed(s) and {runs} abandoned run(s)")
        return feeds
