from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from feedforge.api import automation, feeds, health, status
from feedforge.config import get_settings
from feedforge.database import engine, Base, ensure_sqlite_columns
from feedforge.errors import FeedForgeError
from feedforge.scheduler import start_scheduler, stop_scheduler
from feedforge.services.feed_scheduler import get_feed_scheduler, shutdown_feed_scheduler
from feedforge.services.webhook_dispatcher import get_webhook_dispatcher, shutdown_dispatcher
from feedforge.utils.version import get_version
import feedforge.models  # noqa: F401  (registers tables on Base.metadata)

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting Feedforge {get_version()}")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        Base.metadata.create_all(bind=engine)
        ensure_sqlite_columns()

    # Runs interrupted by a previous crash still hold their feed locks
    get_feed_scheduler().pipeline.reconcile_abandoned()
    get_webhook_dispatcher().requeue_in_flight()

    if settings.scheduler_enabled:
        try:
            start_scheduler()
            logger.info("✅ APScheduler started")
        except Exception as e:
            logger.error(f"❌ Scheduler startup failed: {e}")
    else:
        logger.info("Scheduler disabled; expecting external POST /feeds/run-scheduled")

    yield

    logger.info("🛑 Shutting down Feedforge")

    try:
        stop_scheduler()
        await get_feed_scheduler().drain()
        shutdown_feed_scheduler()
        await shutdown_dispatcher()
        logger.info("✅ Workers and webhook client shut down")
    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}")


app = FastAPI(
    title="Feedforge",
    description="Product feed generation for shopping channels",
    version=get_version(),
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)


@app.exception_handler(FeedForgeError)
async def feedforge_error_handler(request: Request, exc: FeedForgeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed [{exc.code}]: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(automation.router)
app.include_router(feeds.router)
app.include_router(status.router, tags=["status"])
app.include_router(health.router, tags=["health"])


@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
