"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.asyncio import Redis

from source_sync.api.routes import health_router, sync_router
from source_sync.config import get_settings
from source_sync.ingestion import SyncPipeline, SyncScheduler, build_queues
from source_sync.storage import get_session_factory, init_database

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    redis = None

    # Startup
    if app.state.pipeline is None:
        settings = get_settings()
        await init_database()

        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        group_queue, item_queue = build_queues(redis, settings)
        app.state.pipeline = SyncPipeline(await get_session_factory(), group_queue, item_queue)
        app.state.scheduler = SyncScheduler(app.state.pipeline)

    logger.info("api_started")

    yield

    # Shutdown
    if redis is not None:
        await redis.aclose()


def create_app(pipeline: SyncPipeline | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="source-sync",
        description="Knowledge source synchronization service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.scheduler = SyncScheduler(pipeline) if pipeline is not None else None

    # Register routes
    app.include_router(sync_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {
            "name": "source-sync",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


# Create app instance for uvicorn
app = create_app()
