"""Sync pipeline: group and item job processing plus completion tracking."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from source_sync.config import Settings, get_settings
from source_sync.ingestion.credits import CreditChecker, get_credit_checker
from source_sync.ingestion.reconciler import ContentReconciler
from source_sync.ingestion.sources import SourceRegistry, get_source_registry
from source_sync.models import (
    DiscoveredItem,
    Discovery,
    GroupJobData,
    GroupStatus,
    ItemJobData,
    KnowledgeGroup,
    PageContent,
)
from source_sync.observability import GROUPS_COMPLETED, ITEMS_FAILED
from source_sync.queue import Job, JobOptions, JobQueue, JobState, Worker
from source_sync.storage import KnowledgeGroupRepository, ScrapeItemRepository

logger = structlog.get_logger()

GROUP_JOB = "update-group"
ITEM_JOB = "update-item"


class SyncPipeline:
    """
    Orchestrates syncing knowledge groups through the group and item queues.

    Flow:
    1. A group job discovers one page of items and enqueues an item job per
       new item; the last new item carries the cursor of the next page
    2. An item job fetches and stores its content, then enqueues the group
       job for the next page when it carries a cursor
    3. Every settled job runs the completion check, which marks the group
       done once no item is awaiting an update and no group job is pending
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        group_queue: JobQueue,
        item_queue: JobQueue,
        registry: SourceRegistry | None = None,
        credits: CreditChecker | None = None,
        reconciler: ContentReconciler | None = None,
        item_concurrency: int | None = None,
        poll_interval: float | None = None,
        web_max_pages: int | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.group_queue = group_queue
        self.item_queue = item_queue
        self.registry = registry or get_source_registry()
        self.credits = credits or get_credit_checker()
        self.reconciler = reconciler or ContentReconciler(session_factory)
        self.web_max_pages = web_max_pages or settings.web_max_pages

        poll_interval = poll_interval or settings.worker_poll_interval
        # Discovery is serialized so a group's pagination never races itself
        self.group_worker = Worker(
            group_queue, self.process_group_job, concurrency=1, poll_interval=poll_interval
        )
        self.item_worker = Worker(
            item_queue,
            self.process_item_job,
            concurrency=item_concurrency or settings.item_concurrency,
            poll_interval=poll_interval,
        )
        self.group_worker.on("completed", self.on_group_completed)
        self.group_worker.on("failed", self.on_group_failed)
        self.item_worker.on("completed", self.on_item_completed)
        self.item_worker.on("failed", self.on_item_failed)

    @asynccontextmanager
    async def repositories(
        self,
    ) -> AsyncIterator[tuple[KnowledgeGroupRepository, ScrapeItemRepository]]:
        async with self.session_factory() as session:
            yield KnowledgeGroupRepository(session), ScrapeItemRepository(session)

    # Scheduling

    async def start_sync(self, group_id: str) -> str:
        """Start a new sync process for a group and enqueue its first group job."""
        process_id = str(uuid.uuid4())
        async with self.repositories() as (groups, _):
            await groups.start_process(group_id, process_id)
        await self.schedule_group(group_id, process_id)
        logger.info("group_sync_started", group_id=group_id, process_id=process_id)
        return process_id

    async def schedule_group(
        self, group_id: str, process_id: str, cursor: str | None = None
    ) -> Job | None:
        """Enqueue a group job unless the process is no longer current."""
        async with self.repositories() as (groups, _):
            if not await groups.add_pending_discovery(group_id, process_id):
                logger.info("group_job_not_scheduled", group_id=group_id, process_id=process_id)
                return None
            try:
                data = GroupJobData(
                    knowledge_group_id=group_id, process_id=process_id, cursor=cursor
                )
                return await self.group_queue.add(
                    GROUP_JOB, data.model_dump(mode="json", exclude_none=True)
                )
            except Exception:
                await groups.settle_discovery(group_id, process_id)
                raise

    async def schedule_item(
        self,
        group_id: str,
        process_id: str,
        url: str,
        source_page_id: str | None = None,
        title: str | None = None,
        cursor: str | None = None,
        just_this: bool = False,
        text_page: PageContent | None = None,
    ) -> Job | None:
        """Mark an item for update and enqueue its job, once per process."""
        async with self.repositories() as (_, items):
            if not await items.mark_scheduled(group_id, url, process_id, source_page_id, title):
                return None
            return await self._enqueue_item(
                items,
                ItemJobData(
                    knowledge_group_id=group_id,
                    process_id=process_id,
                    url=url,
                    source_page_id=source_page_id,
                    cursor=cursor,
                    just_this=just_this,
                    text_page=text_page,
                ),
            )

    async def _enqueue_item(self, items: ScrapeItemRepository, data: ItemJobData) -> Job:
        try:
            return await self.item_queue.add(
                ITEM_JOB, data.model_dump(mode="json", exclude_none=True)
            )
        except Exception:
            await items.release(data.knowledge_group_id, data.url, data.process_id)
            raise

    async def _live_item_urls(self, group_id: str, process_id: str) -> set[str]:
        jobs = await self.item_queue.get_jobs(
            [JobState.WAITING, JobState.DELAYED, JobState.ACTIVE]
        )
        return {
            job.data.get("url")
            for job in jobs
            if job.data.get("knowledge_group_id") == group_id
            and job.data.get("process_id") == process_id
        }

    async def schedule_discovery(
        self, group: KnowledgeGroup, process_id: str, discovery: Discovery
    ) -> int:
        """
        Enqueue item jobs for one discovery page, in discovery order.

        The next cursor rides on the last newly scheduled item. When no item
        is left to carry it, the next group job is enqueued directly.
        """
        entries: list[ItemJobData] = [
            ItemJobData(
                knowledge_group_id=group.id,
                process_id=process_id,
                url=item.url,
                source_page_id=item.source_page_id,
            )
            for item in discovery.items
        ]
        titles = [item.title for item in discovery.items]
        for page in discovery.pages:
            entries.append(
                ItemJobData(
                    knowledge_group_id=group.id,
                    process_id=process_id,
                    url=page.url,
                    source_page_id=page.source_page_id,
                    text_page=PageContent(title=page.title, text=page.text),
                )
            )
            titles.append(page.title)

        async with self.repositories() as (_, items):
            # Flagged by this process on an earlier attempt but left without a job
            orphaned = await items.list_awaiting_update(
                group.id, process_id, [entry.url for entry in entries]
            )
            if orphaned:
                orphaned -= await self._live_item_urls(group.id, process_id)

            # Each entry is enqueued once the next new one is known, so at most
            # one flagged entry is ever without a job
            scheduled = 0
            held: ItemJobData | None = None
            try:
                for entry, title in zip(entries, titles):
                    if entry.url in orphaned:
                        orphaned.discard(entry.url)
                    elif not await items.mark_scheduled(
                        group.id, entry.url, process_id, entry.source_page_id, title
                    ):
                        continue
                    previous, held = held, entry
                    scheduled += 1
                    if previous is not None:
                        await self._enqueue_item(items, previous)

                if held is not None:
                    held.cursor = discovery.next_cursor
                    await self._enqueue_item(items, held)
                    held = None
            except Exception:
                if held is not None:
                    await items.release(group.id, held.url, process_id)
                raise

        if discovery.next_cursor and not scheduled:
            await self.schedule_group(group.id, process_id, discovery.next_cursor)

        logger.info(
            "discovery_scheduled",
            group_id=group.id,
            process_id=process_id,
            discovered=len(entries),
            scheduled=scheduled,
            has_next_page=discovery.next_cursor is not None,
        )
        return scheduled

    async def _schedule_crawled(
        self, group: KnowledgeGroup, process_id: str, discovered: list[DiscoveredItem]
    ) -> int:
        """Enqueue items found while fetching another item, up to the page limit."""
        async with self.repositories() as (_, items):
            budget = self.web_max_pages - await items.count_for_process(group.id, process_id)
        scheduled = 0
        for item in discovered:
            if scheduled >= budget:
                logger.info("crawl_limit_reached", group_id=group.id, limit=self.web_max_pages)
                break
            job = await self.schedule_item(
                group.id, process_id, item.url, item.source_page_id, item.title
            )
            if job is not None:
                scheduled += 1
        return scheduled

    # Processors

    async def _current_group(self, group_id: str, process_id: str) -> KnowledgeGroup | None:
        """The group if the process is still the one running it."""
        async with self.repositories() as (groups, _):
            group = await groups.get(group_id)
        if (
            group is None
            or group.update_process_id != process_id
            or group.status != GroupStatus.PROCESSING
        ):
            return None
        return group

    async def process_group_job(self, job: Job) -> str:
        data = GroupJobData.model_validate(job.data)
        log = logger.bind(group_id=data.knowledge_group_id, process_id=data.process_id, job_id=job.id)

        group = await self._current_group(data.knowledge_group_id, data.process_id)
        if group is None:
            log.info("group_job_discarded")
            return "discarded"
        if not await self.credits.has_credits(group.user_id):
            log.info("group_job_no_credits")
            return "no_credits"

        source = self.registry.make_source(group.type)
        discovery = await source.update_group(data, group)
        await self.schedule_discovery(group, data.process_id, discovery)
        return "discovered"

    async def process_item_job(self, job: Job) -> str:
        data = ItemJobData.model_validate(job.data)
        log = logger.bind(
            group_id=data.knowledge_group_id, process_id=data.process_id, job_id=job.id, url=data.url
        )

        group = await self._current_group(data.knowledge_group_id, data.process_id)
        if group is None:
            log.info("item_job_discarded")
            return "discarded"
        if not await self.credits.has_credits(group.user_id):
            log.info("item_job_no_credits")
            return "no_credits"

        if data.text_page:
            page, discovered = data.text_page, []
        else:
            source = self.registry.make_source(group.type)
            result = await source.update_item(data, group)
            page, discovered = result.page, result.discovered

        status = "empty"
        if page:
            status = await self.reconciler.upsert_item(
                group, data.url, page.title, page.text, data.source_page_id
            )

        if not data.just_this:
            if discovered:
                await self._schedule_crawled(group, data.process_id, discovered)
            if data.cursor:
                await self.schedule_group(group.id, data.process_id, data.cursor)

        log.debug("item_job_processed", result=status)
        return status

    # Listeners

    async def on_item_completed(self, job: Job, result: object) -> None:
        data = ItemJobData.model_validate(job.data)
        async with self.repositories() as (_, items):
            await items.settle(data.knowledge_group_id, data.url, data.process_id)
        await self.check_completion(
            data.knowledge_group_id, data.process_id, full_sync=not data.just_this
        )

    async def on_item_failed(self, job: Job, reason: str) -> None:
        data = ItemJobData.model_validate(job.data)
        try:
            # Count the next group job before this item stops counting
            if data.cursor and not data.just_this:
                await self.schedule_group(data.knowledge_group_id, data.process_id, data.cursor)
        finally:
            async with self.repositories() as (_, items):
                await items.mark_failed(
                    data.knowledge_group_id, data.url, data.process_id, reason
                )
        ITEMS_FAILED.inc()
        logger.warning(
            "item_failed",
            group_id=data.knowledge_group_id,
            process_id=data.process_id,
            url=data.url,
            reason=reason,
        )
        await self.check_completion(
            data.knowledge_group_id, data.process_id, full_sync=not data.just_this
        )

    async def on_group_completed(self, job: Job, result: object) -> None:
        data = GroupJobData.model_validate(job.data)
        async with self.repositories() as (groups, _):
            await groups.settle_discovery(data.knowledge_group_id, data.process_id)
        await self.check_completion(data.knowledge_group_id, data.process_id)

    async def on_group_failed(self, job: Job, reason: str) -> None:
        data = GroupJobData.model_validate(job.data)
        async with self.repositories() as (groups, _):
            await groups.settle_discovery(data.knowledge_group_id, data.process_id)
            marked = await groups.mark_error(data.knowledge_group_id, data.process_id, reason)
        if marked:
            GROUPS_COMPLETED.labels(status=GroupStatus.ERROR.value).inc()
            logger.error(
                "group_sync_failed",
                group_id=data.knowledge_group_id,
                process_id=data.process_id,
                reason=reason,
            )
        await self.check_completion(data.knowledge_group_id, data.process_id)

    # Completion

    async def check_completion(
        self, group_id: str, process_id: str, full_sync: bool = True
    ) -> str:
        """
        Decide whether the group's sync has finished or was cancelled.

        Returns one of "done", "pending", "cancelled", "superseded" or
        "noop" (the process already finished).
        """
        async with self.repositories() as (groups, items):
            state = await groups.get_state(group_id)

            if state is None or state.status != GroupStatus.PROCESSING:
                if (
                    state is not None
                    and state.status == GroupStatus.DONE
                    and state.update_process_id == process_id
                ):
                    return "noop"
                pruned = await self.prune_jobs(group_id)
                deleted = await items.delete_pending(group_id) if state else 0
                cleared = await items.clear_pending_updates(group_id) if state else 0
                logger.info(
                    "group_sync_cancelled",
                    group_id=group_id,
                    process_id=process_id,
                    pruned_jobs=pruned,
                    deleted_items=deleted,
                    cleared_items=cleared,
                )
                return "cancelled"

            if state.update_process_id != process_id:
                pruned = await self.prune_jobs(group_id, process_id)
                logger.info(
                    "superseded_jobs_pruned",
                    group_id=group_id,
                    process_id=process_id,
                    pruned_jobs=pruned,
                )
                return "superseded"

            if state.pending_discovery_jobs > 0:
                return "pending"
            if await items.count_pending_updates(group_id) > 0:
                return "pending"

            if not await groups.mark_done(group_id, process_id):
                return "noop"

            GROUPS_COMPLETED.labels(status=GroupStatus.DONE.value).inc()
            removed = 0
            if full_sync and state.remove_stale_pages:
                removed = await items.delete_stale(group_id, process_id)
            logger.info(
                "group_sync_completed",
                group_id=group_id,
                process_id=process_id,
                stale_removed=removed,
            )
            return "done"

    async def prune_jobs(self, group_id: str, process_id: str | None = None) -> int:
        """Remove waiting/delayed jobs of a group, or of one of its processes."""

        def matches(job: Job) -> bool:
            if job.data.get("knowledge_group_id") != group_id:
                return False
            return process_id is None or job.data.get("process_id") == process_id

        pruned = await self.item_queue.remove_jobs(matches)
        pruned += await self.group_queue.remove_jobs(matches)
        return pruned

    # Workers

    async def drain(self, max_rounds: int = 1000) -> int:
        """Process ready jobs on both queues until both are idle."""
        total = 0
        for _ in range(max_rounds):
            handled = await self.group_worker.drain() + await self.item_worker.drain()
            if not handled:
                break
            total += handled
        return total

    async def run_workers(self) -> None:
        await asyncio.gather(self.group_worker.run(), self.item_worker.run())

    async def close(self) -> None:
        await self.group_worker.close()
        await self.item_worker.close()


def build_queues(redis: Redis, settings: Settings | None = None) -> tuple[JobQueue, JobQueue]:
    """Group and item queues configured from settings."""
    settings = settings or get_settings()
    options = JobOptions(attempts=settings.job_attempts, backoff_delay_ms=settings.job_backoff_ms)
    group_queue = JobQueue(redis, settings.group_queue_name, settings.queue_prefix, options)
    item_queue = JobQueue(redis, settings.item_queue_name, settings.queue_prefix, options)
    return group_queue, item_queue
