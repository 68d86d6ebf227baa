"""Repository pattern for database operations."""

import hashlib
import uuid
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from source_sync.errors import ConfigurationError
from source_sync.models.knowledge import (
    Chunk,
    GroupStatus,
    GroupSyncState,
    ItemStatus,
    KnowledgeGroup,
    ScrapeItem,
)
from source_sync.storage.database import ChunkORM, KnowledgeGroupORM, ScrapeItemORM


def _now() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeGroupRepository:
    """Repository for knowledge group reads and sync state transitions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, group_id: str) -> KnowledgeGroup | None:
        """Get a group by ID."""
        result = await self.session.execute(
            select(KnowledgeGroupORM).where(KnowledgeGroupORM.id == group_id)
        )
        orm = result.scalar_one_or_none()
        return self._to_model(orm) if orm else None

    async def get_state(self, group_id: str) -> GroupSyncState | None:
        """Get only the sync state columns of a group."""
        result = await self.session.execute(
            select(
                KnowledgeGroupORM.id,
                KnowledgeGroupORM.status,
                KnowledgeGroupORM.update_process_id,
                KnowledgeGroupORM.pending_discovery_jobs,
                KnowledgeGroupORM.remove_stale_pages,
            ).where(KnowledgeGroupORM.id == group_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return GroupSyncState(
            id=row.id,
            status=row.status,
            update_process_id=row.update_process_id,
            pending_discovery_jobs=row.pending_discovery_jobs,
            remove_stale_pages=row.remove_stale_pages,
        )

    async def list_due(self, now: datetime) -> list[GroupSyncState]:
        """Groups whose next scheduled update is due."""
        result = await self.session.execute(
            select(
                KnowledgeGroupORM.id,
                KnowledgeGroupORM.status,
                KnowledgeGroupORM.update_process_id,
                KnowledgeGroupORM.pending_discovery_jobs,
                KnowledgeGroupORM.remove_stale_pages,
            ).where(
                KnowledgeGroupORM.next_update_at.is_not(None),
                KnowledgeGroupORM.next_update_at <= now,
            )
        )
        return [
            GroupSyncState(
                id=row.id,
                status=row.status,
                update_process_id=row.update_process_id,
                pending_discovery_jobs=row.pending_discovery_jobs,
                remove_stale_pages=row.remove_stale_pages,
            )
            for row in result
        ]

    async def create(self, group: KnowledgeGroup) -> KnowledgeGroup:
        """Create a new group."""
        data = group.model_dump(exclude={"created_at", "updated_at"})
        data["type"] = group.type.value
        data["status"] = group.status.value
        data["update_frequency"] = group.update_frequency.value
        self.session.add(KnowledgeGroupORM(**data))
        await self.session.commit()
        return group

    async def start_process(self, group_id: str, process_id: str) -> None:
        """Mark a group as processing under a fresh process id."""
        await self.session.execute(
            update(KnowledgeGroupORM)
            .where(KnowledgeGroupORM.id == group_id)
            .values(
                status=GroupStatus.PROCESSING.value,
                update_process_id=process_id,
                pending_discovery_jobs=0,
                last_error=None,
            )
        )
        await self.session.commit()

    async def set_next_update_at(self, group_id: str, when: datetime | None) -> None:
        await self.session.execute(
            update(KnowledgeGroupORM)
            .where(KnowledgeGroupORM.id == group_id)
            .values(next_update_at=when)
        )
        await self.session.commit()

    async def add_pending_discovery(self, group_id: str, process_id: str) -> bool:
        """Count one more group job for the current process."""
        result = await self.session.execute(
            update(KnowledgeGroupORM)
            .where(
                KnowledgeGroupORM.id == group_id,
                KnowledgeGroupORM.update_process_id == process_id,
            )
            .values(pending_discovery_jobs=KnowledgeGroupORM.pending_discovery_jobs + 1)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def settle_discovery(self, group_id: str, process_id: str) -> None:
        """Count one group job of the current process as settled."""
        await self.session.execute(
            update(KnowledgeGroupORM)
            .where(
                KnowledgeGroupORM.id == group_id,
                KnowledgeGroupORM.update_process_id == process_id,
                KnowledgeGroupORM.pending_discovery_jobs > 0,
            )
            .values(pending_discovery_jobs=KnowledgeGroupORM.pending_discovery_jobs - 1)
        )
        await self.session.commit()

    async def mark_done(self, group_id: str, process_id: str) -> bool:
        """
        Transition processing -> done for the given process.

        Returns False when another caller already made the transition or the
        process is no longer current.
        """
        result = await self.session.execute(
            update(KnowledgeGroupORM)
            .where(
                KnowledgeGroupORM.id == group_id,
                KnowledgeGroupORM.update_process_id == process_id,
                KnowledgeGroupORM.status == GroupStatus.PROCESSING.value,
            )
            .values(status=GroupStatus.DONE.value, last_synced_at=_now())
        )
        await self.session.commit()
        return result.rowcount > 0

    async def mark_error(self, group_id: str, process_id: str, reason: str) -> bool:
        result = await self.session.execute(
            update(KnowledgeGroupORM)
            .where(
                KnowledgeGroupORM.id == group_id,
                KnowledgeGroupORM.update_process_id == process_id,
                KnowledgeGroupORM.status == GroupStatus.PROCESSING.value,
            )
            .values(status=GroupStatus.ERROR.value, last_error=reason)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def stop(self, group_id: str) -> None:
        """Detach the running process so its remaining jobs are discarded."""
        await self.session.execute(
            update(KnowledgeGroupORM)
            .where(KnowledgeGroupORM.id == group_id)
            .values(
                status=GroupStatus.DONE.value,
                update_process_id=None,
                pending_discovery_jobs=0,
            )
        )
        await self.session.commit()

    def _to_model(self, orm: KnowledgeGroupORM) -> KnowledgeGroup:
        try:
            return KnowledgeGroup(
                id=orm.id,
                user_id=orm.user_id,
                type=orm.type,
                status=orm.status,
                update_process_id=orm.update_process_id,
                next_update_at=orm.next_update_at,
                update_frequency=orm.update_frequency,
                url=orm.url,
                urls=orm.urls or [],
                skip_page_regex=orm.skip_page_regex,
                allowed_github_issue_states=orm.allowed_github_issue_states,
                remove_stale_pages=orm.remove_stale_pages,
                github_token=orm.github_token,
                linear_api_key=orm.linear_api_key,
                linear_skip_issue_statuses=orm.linear_skip_issue_statuses,
                confluence_host=orm.confluence_host,
                confluence_email=orm.confluence_email,
                confluence_api_key=orm.confluence_api_key,
                notion_secret=orm.notion_secret,
                pending_discovery_jobs=orm.pending_discovery_jobs,
                last_error=orm.last_error,
                last_synced_at=orm.last_synced_at,
                created_at=orm.created_at,
                updated_at=orm.updated_at,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid knowledge group {orm.id}: {e}") from e


class ScrapeItemRepository:
    """Repository for scrape item bookkeeping."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, item_id: str) -> ScrapeItem | None:
        """Get an item by ID."""
        result = await self.session.execute(
            select(ScrapeItemORM).where(ScrapeItemORM.id == item_id)
        )
        orm = result.scalar_one_or_none()
        return self._to_model(orm) if orm else None

    async def get_by_url(self, group_id: str, url: str) -> ScrapeItem | None:
        orm = await self._get_orm(group_id, url)
        return self._to_model(orm) if orm else None

    async def list_by_group(self, group_id: str) -> list[ScrapeItem]:
        result = await self.session.execute(
            select(ScrapeItemORM)
            .where(ScrapeItemORM.knowledge_group_id == group_id)
            .order_by(ScrapeItemORM.created_at)
        )
        return [self._to_model(orm) for orm in result.scalars()]

    async def create(self, item: ScrapeItem) -> ScrapeItem:
        data = item.model_dump(exclude={"created_at", "updated_at"})
        data["status"] = item.status.value
        self.session.add(ScrapeItemORM(**data))
        await self.session.commit()
        return item

    async def mark_scheduled(
        self,
        group_id: str,
        url: str,
        process_id: str,
        source_page_id: str | None = None,
        title: str | None = None,
    ) -> bool:
        """
        Flag an item as expected to be refreshed by the given process.

        Creates the item when it is new. Returns False if this process has
        already scheduled the item.
        """
        orm = await self._get_orm(group_id, url, for_update=True)
        if orm is not None and orm.last_process_id == process_id:
            await self.session.rollback()
            return False

        if orm is None:
            orm = ScrapeItemORM(
                id=str(uuid.uuid4()),
                knowledge_group_id=group_id,
                url=url,
                status=ItemStatus.PENDING.value,
            )
            self.session.add(orm)

        orm.will_update = True
        orm.last_process_id = process_id
        if source_page_id:
            orm.source_page_id = source_page_id
        if title and not orm.title:
            orm.title = title

        try:
            await self.session.commit()
        except IntegrityError:
            # Another job inserted the same url concurrently
            await self.session.rollback()
            return False
        return True

    async def settle(self, group_id: str, url: str, process_id: str) -> None:
        """Clear the pending-update flag set by the given process."""
        await self.session.execute(
            update(ScrapeItemORM)
            .where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.url == url,
                ScrapeItemORM.last_process_id == process_id,
            )
            .values(will_update=False)
        )
        await self.session.commit()

    async def release(self, group_id: str, url: str, process_id: str) -> None:
        """Undo ``mark_scheduled`` so a retry of the same process schedules the item again."""
        await self.session.execute(
            update(ScrapeItemORM)
            .where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.url == url,
                ScrapeItemORM.last_process_id == process_id,
            )
            .values(will_update=False, last_process_id=None)
        )
        await self.session.commit()

    async def list_awaiting_update(
        self, group_id: str, process_id: str, urls: list[str]
    ) -> set[str]:
        """Urls among ``urls`` that the given process flagged and has not settled."""
        if not urls:
            return set()
        result = await self.session.execute(
            select(ScrapeItemORM.url).where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.last_process_id == process_id,
                ScrapeItemORM.will_update.is_(True),
                ScrapeItemORM.url.in_(urls),
            )
        )
        return set(result.scalars().all())

    async def mark_failed(self, group_id: str, url: str, process_id: str, error: str) -> None:
        """Record a terminal fetch failure for an item."""
        orm = await self._get_orm(group_id, url, for_update=True)
        if orm is None:
            orm = ScrapeItemORM(
                id=str(uuid.uuid4()),
                knowledge_group_id=group_id,
                url=url,
                last_process_id=process_id,
            )
            self.session.add(orm)
        elif orm.last_process_id not in (None, process_id):
            # Re-scheduled by a newer process
            await self.session.rollback()
            return

        orm.status = ItemStatus.FAILED.value
        orm.error = error
        orm.will_update = False
        await self.session.commit()

    async def save_content(
        self,
        group_id: str,
        url: str,
        title: str,
        markdown: str,
        content_hash: str,
        chunks: list[str],
        source_page_id: str | None = None,
    ) -> ScrapeItem:
        """Store fetched content and replace the item's chunks in one transaction."""
        orm = await self._get_orm(group_id, url, for_update=True)
        if orm is None:
            orm = ScrapeItemORM(
                id=str(uuid.uuid4()),
                knowledge_group_id=group_id,
                url=url,
            )
            self.session.add(orm)
            await self.session.flush()
        else:
            await self.session.execute(
                delete(ChunkORM).where(ChunkORM.scrape_item_id == orm.id)
            )

        orm.title = title
        orm.markdown = markdown
        orm.content_hash = content_hash
        orm.status = ItemStatus.DONE.value
        orm.error = None
        if source_page_id:
            orm.source_page_id = source_page_id

        for index, content in enumerate(chunks):
            self.session.add(
                ChunkORM(
                    id=f"{orm.id}:{index}",
                    scrape_item_id=orm.id,
                    chunk_index=index,
                    content=content,
                    content_hash=compute_content_hash(content),
                )
            )

        await self.session.commit()
        return self._to_model(orm)

    async def count_pending_updates(self, group_id: str) -> int:
        """Count items still expected to be refreshed."""
        result = await self.session.execute(
            select(func.count(ScrapeItemORM.id)).where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.will_update.is_(True),
            )
        )
        return result.scalar() or 0

    async def count_for_process(self, group_id: str, process_id: str) -> int:
        """Count items scheduled by the given process."""
        result = await self.session.execute(
            select(func.count(ScrapeItemORM.id)).where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.last_process_id == process_id,
            )
        )
        return result.scalar() or 0

    async def clear_pending_updates(self, group_id: str) -> int:
        result = await self.session.execute(
            update(ScrapeItemORM)
            .where(
                ScrapeItemORM.knowledge_group_id == group_id,
                ScrapeItemORM.will_update.is_(True),
            )
            .values(will_update=False)
        )
        await self.session.commit()
        return result.rowcount

    async def delete_pending(self, group_id: str) -> int:
        """Delete items that were discovered but never fetched."""
        return await self._delete_where(
            ScrapeItemORM.knowledge_group_id == group_id,
            ScrapeItemORM.status == ItemStatus.PENDING.value,
        )

    async def delete_stale(self, group_id: str, process_id: str) -> int:
        """Delete items the given process did not rediscover."""
        return await self._delete_where(
            ScrapeItemORM.knowledge_group_id == group_id,
            or_(
                ScrapeItemORM.last_process_id.is_(None),
                ScrapeItemORM.last_process_id != process_id,
            ),
        )

    async def _delete_where(self, *conditions) -> int:
        ids = select(ScrapeItemORM.id).where(*conditions)
        await self.session.execute(delete(ChunkORM).where(ChunkORM.scrape_item_id.in_(ids)))
        result = await self.session.execute(delete(ScrapeItemORM).where(*conditions))
        await self.session.commit()
        return result.rowcount

    async def _get_orm(
        self, group_id: str, url: str, for_update: bool = False
    ) -> ScrapeItemORM | None:
        query = select(ScrapeItemORM).where(
            ScrapeItemORM.knowledge_group_id == group_id,
            ScrapeItemORM.url == url,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    def _to_model(self, orm: ScrapeItemORM) -> ScrapeItem:
        return ScrapeItem(
            id=orm.id,
            knowledge_group_id=orm.knowledge_group_id,
            url=orm.url,
            source_page_id=orm.source_page_id,
            title=orm.title,
            markdown=orm.markdown,
            content_hash=orm.content_hash,
            status=orm.status,
            will_update=orm.will_update,
            error=orm.error,
            last_process_id=orm.last_process_id,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )


class ChunkRepository:
    """Repository for stored chunks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_item(self, scrape_item_id: str) -> list[Chunk]:
        """Get all chunks for an item, in order."""
        result = await self.session.execute(
            select(ChunkORM)
            .where(ChunkORM.scrape_item_id == scrape_item_id)
            .order_by(ChunkORM.chunk_index)
        )
        return [self._to_model(orm) for orm in result.scalars()]

    async def count(self) -> int:
        """Count total chunks."""
        result = await self.session.execute(select(func.count(ChunkORM.id)))
        return result.scalar() or 0

    def _to_model(self, orm: ChunkORM) -> Chunk:
        return Chunk(
            id=orm.id,
            scrape_item_id=orm.scrape_item_id,
            chunk_index=orm.chunk_index,
            content=orm.content,
            content_hash=orm.content_hash,
        )


def compute_content_hash(content: str) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content.encode()).hexdigest()
