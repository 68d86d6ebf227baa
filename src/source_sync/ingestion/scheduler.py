"""Entry points that start, refresh and stop group syncs."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from source_sync.errors import InvalidRequestError, NotFoundError
from source_sync.ingestion.pipeline import SyncPipeline
from source_sync.models import GroupStatus, UpdateFrequency

logger = structlog.get_logger()

FREQUENCY_INTERVALS = {
    UpdateFrequency.DAILY: timedelta(days=1),
    UpdateFrequency.WEEKLY: timedelta(days=7),
    UpdateFrequency.MONTHLY: timedelta(days=30),
}


def get_next_update_time(
    frequency: UpdateFrequency | str | None, now: datetime | None = None
) -> datetime | None:
    """When a group with the given frequency should sync next; None for never."""
    if not frequency:
        return None
    interval = FREQUENCY_INTERVALS.get(UpdateFrequency(frequency))
    if interval is None:
        return None
    return (now or datetime.now(timezone.utc)) + interval


class SyncScheduler:
    """Start, refresh and stop syncs on behalf of the cron and HTTP triggers."""

    def __init__(self, pipeline: SyncPipeline):
        self.pipeline = pipeline

    async def start_group_sync(self, group_id: str) -> str:
        async with self.pipeline.repositories() as (groups, _):
            if await groups.get_state(group_id) is None:
                raise NotFoundError(f"Knowledge group {group_id} not found")
        return await self.pipeline.start_sync(group_id)

    async def update_knowledge_bases(self, now: datetime | None = None) -> dict[str, int]:
        """
        Start a sync for every group whose next update is due.

        Groups already processing are skipped. The next update time is
        advanced as soon as a sync is scheduled, whatever its outcome.
        ``scheduled`` counts every group a sync was started for and
        ``failed`` the ones among them whose start raised.
        """
        now = now or datetime.now(timezone.utc)
        async with self.pipeline.repositories() as (groups, _):
            due = await groups.list_due(now)

        to_schedule = [state for state in due if state.status != GroupStatus.PROCESSING]
        results = await asyncio.gather(
            *(self._schedule_due(state.id, now) for state in to_schedule),
            return_exceptions=True,
        )

        failed = 0
        for state, result in zip(to_schedule, results):
            if isinstance(result, Exception):
                failed += 1
                logger.error("scheduled_sync_failed", group_id=state.id, error=str(result))

        summary = {
            "found": len(due),
            "scheduled": len(to_schedule),
            "failed": failed,
        }
        logger.info("knowledge_bases_scanned", **summary)
        return summary

    async def _schedule_due(self, group_id: str, now: datetime) -> str:
        process_id = await self.pipeline.start_sync(group_id)
        async with self.pipeline.repositories() as (groups, _):
            group = await groups.get(group_id)
            await groups.set_next_update_at(
                group_id, get_next_update_time(group.update_frequency if group else None, now)
            )
        return process_id

    async def update_single_item(self, item_id: str) -> str:
        """Refresh one item without further discovery."""
        async with self.pipeline.repositories() as (groups, items):
            item = await items.get(item_id)
            if item is None:
                raise NotFoundError(f"Scrape item {item_id} not found")
            if not item.url:
                raise InvalidRequestError("Item has no URL")

            process_id = str(uuid.uuid4())
            await groups.start_process(item.knowledge_group_id, process_id)

        await self.pipeline.schedule_item(
            item.knowledge_group_id,
            process_id,
            item.url,
            source_page_id=item.source_page_id,
            just_this=True,
        )
        logger.info(
            "item_update_scheduled",
            group_id=item.knowledge_group_id,
            item_id=item_id,
            process_id=process_id,
        )
        return process_id

    async def stop_group(self, group_id: str) -> int:
        """Cancel the running sync of a group. Returns the number of pruned jobs."""
        async with self.pipeline.repositories() as (groups, items):
            if await groups.get_state(group_id) is None:
                raise NotFoundError(f"Knowledge group {group_id} not found")
            await groups.stop(group_id)
            await items.delete_pending(group_id)
            await items.clear_pending_updates(group_id)

        pruned = await self.pipeline.prune_jobs(group_id)
        logger.info("group_sync_stopped", group_id=group_id, pruned_jobs=pruned)
        return pruned


def create_cron_scheduler(scheduler: SyncScheduler, interval_minutes: int) -> AsyncIOScheduler:
    """Periodic in-process trigger for ``update_knowledge_bases``."""
    cron = AsyncIOScheduler(timezone=timezone.utc)
    cron.add_job(
        scheduler.update_knowledge_bases,
        "interval",
        minutes=interval_minutes,
        id="update-knowledge-bases",
        coalesce=True,
        max_instances=1,
    )
    return cron
