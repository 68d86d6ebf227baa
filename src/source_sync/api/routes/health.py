"""Health and metrics API routes."""

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from source_sync.api.deps import get_pipeline
from source_sync.api.schemas import ComponentStatusSchema, HealthResponseSchema
from source_sync.ingestion import SyncPipeline
from source_sync.observability import get_metrics

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponseSchema)
async def health_check(pipeline: SyncPipeline = Depends(get_pipeline)):
    """
    Health check endpoint.

    Returns component status and queue counts.
    """
    components = ComponentStatusSchema()

    try:
        async with pipeline.session_factory() as session:
            await session.execute(text("SELECT 1"))
        components.database = "ok"
    except Exception as e:
        logger.warning("health_database_error", error=str(e))
        components.database = "error"

    queues = {}
    try:
        await pipeline.item_queue.redis.ping()
        for queue in (pipeline.group_queue, pipeline.item_queue):
            queues[queue.name] = await queue.counts()
        components.redis = "ok"
    except Exception as e:
        logger.warning("health_redis_error", error=str(e))
        components.redis = "error"

    status = "healthy" if components.database == components.redis == "ok" else "degraded"
    return HealthResponseSchema(status=status, components=components, queues=queues)


@router.get("/metrics")
async def metrics():
    """Get Prometheus metrics."""
    data, content_type = get_metrics()
    return Response(content=data, media_type=content_type)
