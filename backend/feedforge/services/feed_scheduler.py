"""
Scheduled feed regeneration.

Each tick selects enabled schedules whose ``next_run_at`` has passed and
hands up to ``max_concurrent_runs`` of them to a worker pool. Pipeline runs are
blocking (database and file I/O), so they execute in threads; the tick itself
never waits for them unless asked to. Feeds already generating are skipped and
picked up again by a later tick. Inactive feeds are not selected at all: their
schedules neither run nor record failures until the feed is reactivated.
"""
import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from feedforge.config import get_settings
from feedforge.database import SessionLocal
from feedforge.errors import ConcurrentGenerationInProgress, ConfigError, FeedNotFound
from feedforge.models.feed import Feed, FeedStatus
from feedforge.models.feed_schedule import FeedSchedule
from feedforge.services.pipeline import GenerationPipeline
from feedforge.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Not selectable by a tick
UNSCHEDULABLE_STATUSES = (FeedStatus.GENERATING, FeedStatus.INACTIVE)


class FeedScheduler:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        pipeline: Optional[GenerationPipeline] = None,
        max_concurrent_runs: Optional[int] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory or SessionLocal
        self.pipeline = pipeline or GenerationPipeline(session_factory=self.session_factory)
        self.max_concurrent_runs = max_concurrent_runs or get_settings().max_concurrent_runs
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.max_concurrent_runs, thread_name_prefix="feed-generation"
        )
        self.clock = clock
        self._in_flight: dict[str, asyncio.Future] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def tick(self, now: Optional[datetime] = None, wait: bool = False) -> int:
        """Dispatch due feeds. Returns how many runs were started."""
        now = now or self.clock()
        capacity = self.max_concurrent_runs - len(self._in_flight)
        if capacity <= 0:
            logger.info(f"Scheduler tick skipped: {len(self._in_flight)} runs already in flight")
            return 0

        feed_ids = self._select_due(now, capacity)
        loop = asyncio.get_running_loop()
        for feed_id in feed_ids:
            future = loop.run_in_executor(self.executor, self._run_scheduled, feed_id, now)
            self._in_flight[feed_id] = future
            future.add_done_callback(lambda _f, fid=feed_id: self._in_flight.pop(fid, None))

        if feed_ids:
            logger.info(f"Scheduler tick at {now}: dispatched {len(feed_ids)} feed(s)")
        else:
            logger.debug(f"Scheduler tick at {now}: nothing due")

        if wait:
            await self.drain()
        return len(feed_ids)

    async def drain(self):
        """Wait for every in-flight run to finish."""
        pending = list(self._in_flight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)

    def _select_due(self, now: datetime, limit: int) -> list[str]:
        db = self.session_factory()
        try:
            query = (
                db.query(FeedSchedule.feed_id)
                .join(Feed, Feed.id == FeedSchedule.feed_id)
                .filter(
                    FeedSchedule.enabled == True,
                    FeedSchedule.next_run_at.isnot(None),
                    FeedSchedule.next_run_at <= now,
                    Feed.status.notin_(UNSCHEDULABLE_STATUSES),
                )
                .order_by(FeedSchedule.next_run_at, FeedSchedule.feed_id)
            )
            if self._in_flight:
                query = query.filter(FeedSchedule.feed_id.notin_(list(self._in_flight)))
            return [row.feed_id for row in query.limit(limit).all()]
        finally:
            db.close()

    def _run_scheduled(self, feed_id: str, now: datetime):
        """Worker-thread body: one pipeline run, then the schedule bookkeeping."""
        failure: Optional[str] = None
        try:
            result = self.pipeline.run(feed_id, trigger="scheduled")
            if not result.succeeded:
                failure = result.error_message or result.error_code
        except ConcurrentGenerationInProgress:
            logger.info(f"Scheduled run for feed {feed_id} skipped: already generating")
            return
        except FeedNotFound:
            logger.warning(f"Scheduled feed {feed_id} no longer exists")
            return
        except ConfigError as e:
            failure = e.message
        except Exception as e:
            logger.exception(f"Scheduled run for feed {feed_id} crashed")
            failure = f"{e.__class__.__name__}: {e}"

        self._record_outcome(feed_id, now, failure)

    def _record_outcome(self, feed_id: str, now: datetime, failure: Optional[str]):
        db = self.session_factory()
        try:
            schedule = db.query(FeedSchedule).filter(FeedSchedule.feed_id == feed_id).first()
            if schedule is None:
                return
            if failure is None:
                schedule.record_success(now)
                logger.info(f"✅ Scheduled run for feed {feed_id} succeeded; next at {schedule.next_run_at}")
            else:
                schedule.record_failure(failure, now)
                if schedule.auto_paused:
                    logger.warning(
                        f"⚠️ Schedule for feed {feed_id} auto-paused after "
                        f"{schedule.consecutive_failures} consecutive failures: {failure}"
                    )
                else:
                    logger.error(
                        f"❌ Scheduled run for feed {feed_id} failed "
                        f"({schedule.consecutive_failures} in a row): {failure}"
                    )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Could not update schedule for feed {feed_id}")
        finally:
            db.close()


_global_feed_scheduler: Optional[FeedScheduler] = None


def get_feed_scheduler() -> FeedScheduler:
    global _global_feed_scheduler
    if _global_feed_scheduler is None:
        _global_feed_scheduler = FeedScheduler()
    return _global_feed_scheduler


def shutdown_feed_scheduler(wait: bool = True):
    global _global_feed_scheduler
    if _global_feed_scheduler is not None:
        _global_feed_scheduler.shutdown(wait=wait)
        _global_feed_scheduler = None
