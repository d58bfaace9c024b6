"""
Test fixtures for Feedforge backend tests.
"""
import itertools
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from feedforge.api.deps import get_artifact_store, get_scheduler_service
from feedforge.database import Base, get_db, get_session_factory
from feedforge.errors import StorageError
from feedforge.main import app
from feedforge.models import Feed, FeedChannel, FeedFormat, FeedStatus, Product
from feedforge.services.artifact_store import ArtifactStore
from feedforge.services.feed_scheduler import FeedScheduler
from feedforge.services.pipeline import GenerationPipeline


# Create test database engine (SQLite in-memory). StaticPool keeps one
# connection so pipeline worker threads see the same database.
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

CATALOG_EPOCH = datetime(2026, 3, 1, 6, 0, 0)

CHANNEL_FOR_FORMAT = {
    FeedFormat.XML: FeedChannel.GOOGLE_SHOPPING,
    FeedFormat.CSV: FeedChannel.FACEBOOK_CATALOG,
    FeedFormat.JSON: FeedChannel.INSTAGRAM_SHOPPING,
}


class FailingArtifactStore(ArtifactStore):
    """Artifact store whose writes always fail."""

    def save(self, feed_id, run_id, extension, chunks):
        raise StorageError("disk full")


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(root=str(tmp_path / "artifacts"), retention=5)


@pytest.fixture
def pipeline(db_session, artifact_store):
    return GenerationPipeline(
        session_factory=TestSessionLocal,
        artifact_store=artifact_store,
        base_url="http://feeds.test",
    )


@pytest.fixture
def failing_pipeline(db_session, tmp_path):
    return GenerationPipeline(
        session_factory=TestSessionLocal,
        artifact_store=FailingArtifactStore(root=str(tmp_path / "unused")),
        base_url="http://feeds.test",
    )


def _make_scheduler(pipeline, max_concurrent_runs=50):
    return FeedScheduler(
        session_factory=TestSessionLocal,
        pipeline=pipeline,
        max_concurrent_runs=max_concurrent_runs,
        executor=ThreadPoolExecutor(max_workers=1),
    )


@pytest.fixture
def feed_scheduler(pipeline):
    scheduler = _make_scheduler(pipeline)
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def make_scheduler():
    """Build schedulers with a custom pipeline or concurrency cap."""
    created = []

    def _make(pipeline, max_concurrent_runs=50):
        scheduler = _make_scheduler(pipeline, max_concurrent_runs)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown()


@pytest.fixture(scope="function")
async def client(override_get_db, artifact_store, feed_scheduler):
    """
    Create an async test client with the database, artifact store and
    scheduler dependencies overridden.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_artifact_store] = lambda: artifact_store
    app.dependency_overrides[get_scheduler_service] = lambda: feed_scheduler

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await feed_scheduler.drain()
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db_session):
    """Persist a catalog product; each call is one second newer than the last."""
    counter = itertools.count(1)

    def _make(tenant_id="tenant-1", **overrides):
        n = next(counter)
        values = dict(
            tenant_id=tenant_id,
            external_id=f"ext-{n}",
            sku=f"SKU-{n}",
            title=f"Product {n}",
            description=f"Description {n}",
            brand="A",
            category="Apparel",
            price=Decimal("25.00"),
            currency="USD",
            availability="IN_STOCK",
            images=[f"http://img.test/{n}.jpg"],
            tags=[],
            collections=[],
            metadata_={},
            updated_at=CATALOG_EPOCH + timedelta(seconds=n),
        )
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_feed(db_session):
    counter = itertools.count(1)

    def _make(tenant_id="tenant-1", format=FeedFormat.XML, settings=None,
              status=FeedStatus.ACTIVE, name=None):
        feed = Feed(
            tenant_id=tenant_id,
            name=name or f"Feed {next(counter)}",
            channel=CHANNEL_FOR_FORMAT[format],
            format=format,
            status=status,
            settings=settings or {},
            products_count=0,
        )
        db_session.add(feed)
        db_session.commit()
        return feed

    return _make


@pytest.fixture
def session_factory(db_session):
    return TestSessionLocal
