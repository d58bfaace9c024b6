"""Tests for scheduled regeneration: selection, coalescing, concurrency cap and auto-pause."""
from datetime import datetime, timedelta

from feedforge.models import FeedSchedule, FeedStatus, GenerationHistory
from feedforge.schemas.schedule import ScheduleUpdate
from feedforge.services.feed_service import FeedService

T = datetime(2026, 3, 1, 12, 0, 0)


def add_schedule(db_session, feed, next_run_at=T, interval_hours=1, enabled=True):
    schedule = FeedSchedule(
        feed_id=feed.id,
        enabled=enabled,
        interval_hours=interval_hours,
        next_run_at=next_run_at,
        consecutive_failures=0,
    )
    db_session.add(schedule)
    db_session.commit()
    return schedule


def reload(db_session, obj):
    db_session.expire_all()
    return db_session.get(type(obj), obj.id)


class TestSelection:
    async def test_due_feed_runs_and_advances(self, db_session, feed_scheduler, make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed)

        dispatched = await feed_scheduler.tick(now=T, wait=True)

        assert dispatched == 1
        schedule = reload(db_session, schedule)
        assert schedule.last_run_at == T
        assert schedule.next_run_at == T + timedelta(hours=1)
        assert schedule.consecutive_failures == 0
        history = db_session.query(GenerationHistory).filter_by(feed_id=feed.id).one()
        assert history.trigger == "scheduled"
        assert history.status == "success"

    async def test_not_due_not_selected(self, db_session, feed_scheduler, make_feed):
        feed = make_feed()
        add_schedule(db_session, feed, next_run_at=T + timedelta(minutes=1))
        assert await feed_scheduler.tick(now=T, wait=True) == 0

    async def test_disabled_not_selected(self, db_session, feed_scheduler, make_feed):
        feed = make_feed()
        add_schedule(db_session, feed, enabled=False)
        assert await feed_scheduler.tick(now=T, wait=True) == 0

    async def test_generating_and_inactive_feeds_skipped(self, db_session, feed_scheduler, pipeline, make_feed):
        busy = make_feed()
        inactive = make_feed(status=FeedStatus.INACTIVE)
        add_schedule(db_session, busy)
        parked = add_schedule(db_session, inactive)
        pipeline.begin(busy.id)

        assert await feed_scheduler.tick(now=T, wait=True) == 0

        parked = reload(db_session, parked)
        assert parked.consecutive_failures == 0
        assert parked.enabled is True
        assert parked.next_run_at <= T

    async def test_missed_windows_coalesce(self, db_session, feed_scheduler, make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed, next_run_at=T - timedelta(hours=10))

        assert await feed_scheduler.tick(now=T, wait=True) == 1
        assert await feed_scheduler.tick(now=T, wait=True) == 0

        schedule = reload(db_session, schedule)
        assert schedule.next_run_at == T + timedelta(hours=1)
        assert db_session.query(GenerationHistory).filter_by(feed_id=feed.id).count() == 1

    async def test_concurrency_cap_and_order(self, db_session, pipeline, make_scheduler, make_feed, make_product):
        make_product()
        feeds = [make_feed() for _ in range(3)]
        add_schedule(db_session, feeds[0], next_run_at=T - timedelta(minutes=5))
        add_schedule(db_session, feeds[1], next_run_at=T - timedelta(minutes=10))
        add_schedule(db_session, feeds[2], next_run_at=T)
        scheduler = make_scheduler(pipeline, max_concurrent_runs=2)

        assert await scheduler.tick(now=T, wait=True) == 2

        ran = {h.feed_id for h in db_session.query(GenerationHistory).all()}
        assert ran == {feeds[0].id, feeds[1].id}

        # the remaining feed is picked up by the next tick
        assert await scheduler.tick(now=T, wait=True) == 1

    async def test_ties_broken_by_feed_id(self, db_session, pipeline, make_scheduler, make_feed, make_product):
        make_product()
        feeds = [make_feed() for _ in range(3)]
        for feed in feeds:
            add_schedule(db_session, feed, next_run_at=T)
        scheduler = make_scheduler(pipeline, max_concurrent_runs=1)

        await scheduler.tick(now=T, wait=True)

        ran = db_session.query(GenerationHistory).one()
        assert ran.feed_id == min(f.id for f in feeds)


class TestFailureBackoff:
    async def test_auto_pause_after_three_failures(self, db_session, failing_pipeline, make_scheduler,
                                                   make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed, next_run_at=T, interval_hours=1)
        scheduler = make_scheduler(failing_pipeline)

        for hour in range(3):
            assert await scheduler.tick(now=T + timedelta(hours=hour), wait=True) == 1

        schedule = reload(db_session, schedule)
        assert schedule.consecutive_failures == 3
        assert schedule.enabled is False
        assert schedule.last_error == "disk full"
        assert schedule.auto_paused

        assert await scheduler.tick(now=T + timedelta(hours=3), wait=True) == 0

    async def test_failure_advances_by_one_interval(self, db_session, failing_pipeline, make_scheduler,
                                                     make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed, next_run_at=T, interval_hours=6)
        scheduler = make_scheduler(failing_pipeline)

        await scheduler.tick(now=T, wait=True)

        schedule = reload(db_session, schedule)
        assert schedule.consecutive_failures == 1
        assert schedule.enabled is True
        assert schedule.next_run_at == T + timedelta(hours=6)

    async def test_success_resets_failures(self, db_session, pipeline, failing_pipeline, make_scheduler,
                                           make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed, next_run_at=T)

        await make_scheduler(failing_pipeline).tick(now=T, wait=True)
        await make_scheduler(pipeline).tick(now=T + timedelta(hours=1), wait=True)

        schedule = reload(db_session, schedule)
        assert schedule.consecutive_failures == 0
        assert schedule.last_error is None
        assert schedule.next_run_at == T + timedelta(hours=2)

    async def test_invalid_settings_count_as_failure(self, db_session, feed_scheduler, make_feed):
        feed = make_feed(settings={"filter": {"min_price": 10, "max_price": 1}})
        schedule = add_schedule(db_session, feed)

        await feed_scheduler.tick(now=T, wait=True)

        schedule = reload(db_session, schedule)
        assert schedule.consecutive_failures == 1
        assert "min_price" in schedule.last_error

    async def test_reenable_resets_failures(self, db_session, artifact_store, failing_pipeline, make_scheduler,
                                            make_feed, make_product):
        make_product()
        feed = make_feed()
        schedule = add_schedule(db_session, feed, next_run_at=T)
        scheduler = make_scheduler(failing_pipeline)
        for hour in range(3):
            await scheduler.tick(now=T + timedelta(hours=hour), wait=True)

        db_session.expire_all()
        service = FeedService(db_session, artifact_store=artifact_store)
        service.put_schedule(feed.id, ScheduleUpdate(enabled=True, interval_hours=1), now=T + timedelta(hours=5))

        schedule = reload(db_session, schedule)
        assert schedule.enabled is True
        assert schedule.consecutive_failures == 0
        assert schedule.next_run_at == T + timedelta(hours=5)
        assert await scheduler.tick(now=T + timedelta(hours=5), wait=True) == 1
