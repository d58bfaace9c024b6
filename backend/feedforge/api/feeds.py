from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response
import logging

from feedforge.api.deps import get_feed_service, get_pipeline
from feedforge.schemas.feed import (
    FeedCreate,
    FeedResponse,
    FeedUpdate,
    GenerationHistoryResponse,
    RegenerateResponse,
)
from feedforge.services.feed_service import FeedService
from feedforge.services.pipeline import GenerationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feeds", tags=["feeds"])

FILE_EXTENSIONS = {
    "application/xml": "xml",
    "text/csv": "csv",
    "application/json": "json",
}


@router.post("", response_model=FeedResponse, status_code=201)
async def create_feed(data: FeedCreate, service: FeedService = Depends(get_feed_service)):
    return service.create_feed(data)


@router.get("/{feed_id}", response_model=FeedResponse)
async def get_feed(feed_id: str, service: FeedService = Depends(get_feed_service)):
    return service.get_feed(feed_id)


@router.put("/{feed_id}", response_model=FeedResponse)
async def update_feed(feed_id: str, data: FeedUpdate, service: FeedService = Depends(get_feed_service)):
    return service.update_feed(feed_id, data)


@router.get("/{feed_id}/history", response_model=list[GenerationHistoryResponse])
async def get_history(
    feed_id: str,
    limit: int = Query(50, ge=1, le=500),
    service: FeedService = Depends(get_feed_service),
):
    return service.list_history(feed_id, limit=limit)


@router.post("/{feed_id}/regenerate", response_model=RegenerateResponse, status_code=202)
async def regenerate_feed(
    feed_id: str,
    background_tasks: BackgroundTasks,
    pipeline: GenerationPipeline = Depends(get_pipeline),
):
    """
    Manual trigger. The lock is taken before responding, so a second call
    while this run is in flight gets 409; the run itself continues in the
    background.
    """
    run = pipeline.begin(feed_id, trigger="manual")
    background_tasks.add_task(pipeline.execute, run)
    logger.info(f"Manual regeneration accepted for feed {feed_id} (run {run.run_id})")
    return RegenerateResponse(run_id=run.run_id, feed_id=feed_id)


@router.get("/{feed_id}/download")
async def download_feed(feed_id: str, service: FeedService = Depends(get_feed_service)):
    feed, content = service.latest_artifact(feed_id)
    filename = f"{feed.id}.{FILE_EXTENSIONS[feed.media_type]}"
    return Response(
        content=content,
        media_type=feed.media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{feed_id}/preview")
def preview_feed(
    feed_id: str,
    max_products: int = Query(100, ge=1, le=1000),
    pipeline: GenerationPipeline = Depends(get_pipeline),
):
    preview = pipeline.preview(feed_id, max_products=max_products)
    return Response(
        content=preview.content,
        media_type=preview.media_type,
        headers={
            "X-Products-Included": str(preview.products_included),
            "X-Products-Processed": str(preview.filter_stats.processed),
        },
    )
