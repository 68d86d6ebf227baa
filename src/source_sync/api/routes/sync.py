"""Sync trigger API routes."""

from fastapi import APIRouter, Depends, HTTPException

from source_sync.api.deps import get_scheduler, require_api_token, require_cron_secret
from source_sync.api.schemas import (
    CronResponseSchema,
    GroupRequestSchema,
    ItemRequestSchema,
    MessageResponseSchema,
)
from source_sync.errors import InvalidRequestError, NotFoundError
from source_sync.ingestion import SyncScheduler

router = APIRouter(tags=["sync"])


@router.post(
    "/update-knowledge-base",
    response_model=CronResponseSchema,
    dependencies=[Depends(require_cron_secret)],
)
async def update_knowledge_base(scheduler: SyncScheduler = Depends(get_scheduler)):
    """
    Start a sync for every group whose next update is due.

    Meant to be called by an external cron.
    """
    summary = await scheduler.update_knowledge_bases()
    return CronResponseSchema(**summary)


@router.post(
    "/update-group",
    response_model=MessageResponseSchema,
    dependencies=[Depends(require_api_token)],
)
async def update_group(
    request: GroupRequestSchema,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Start a sync of one knowledge group."""
    try:
        await scheduler.start_group_sync(request.knowledge_group_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessageResponseSchema()


@router.post(
    "/update-item",
    response_model=MessageResponseSchema,
    dependencies=[Depends(require_api_token)],
)
async def update_item(
    request: ItemRequestSchema,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Refresh a single scrape item without further discovery."""
    try:
        await scheduler.update_single_item(request.scrape_item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return MessageResponseSchema()


@router.post(
    "/stop-group",
    response_model=MessageResponseSchema,
    dependencies=[Depends(require_api_token)],
)
async def stop_group(
    request: GroupRequestSchema,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Cancel the running sync of a knowledge group."""
    try:
        await scheduler.stop_group(request.knowledge_group_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessageResponseSchema()
