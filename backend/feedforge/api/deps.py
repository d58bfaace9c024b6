"""Shared FastAPI dependencies for the feed routers."""
from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from feedforge.database import get_db, get_session_factory
from feedforge.services.artifact_store import ArtifactStore
from feedforge.services.feed_scheduler import FeedScheduler, get_feed_scheduler
from feedforge.services.feed_service import FeedService
from feedforge.services.pipeline import GenerationPipeline


def get_artifact_store() -> ArtifactStore:
    return ArtifactStore()


def get_feed_service(
    db: Session = Depends(get_db),
    artifact_store: ArtifactStore = Depends(get_artifact_store),
) -> FeedService:
    return FeedService(db, artifact_store=artifact_store)


def get_pipeline(
    session_factory: sessionmaker = Depends(get_session_factory),
    artifact_store: ArtifactStore = Depends(get_artifact_store),
) -> GenerationPipeline:
    return GenerationPipeline(session_factory=session_factory, artifact_store=artifact_store)


def get_scheduler_service() -> FeedScheduler:
    return get_feed_scheduler()
