"""Content reconciler: stores fetched pages as items and chunks."""

from typing import Literal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from source_sync.errors import ChunkSizeError, ContentError, UpsertError
from source_sync.ingestion.chunker import MarkdownSplitter
from source_sync.models import ItemStatus, KnowledgeGroup
from source_sync.observability import CHUNKS_STORED, ITEMS_UPSERTED
from source_sync.storage import ScrapeItemRepository, compute_content_hash

logger = structlog.get_logger()

UpsertResult = Literal["created", "updated", "skipped"]


class ContentReconciler:
    """
    Decide create/update/skip for a fetched page and store its chunks.

    Flow:
    1. Hash the page text
    2. Skip if an item with the same hash is already done
    3. Otherwise split into chunks and replace the item's chunks
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chunk_size: int | None = None,
    ):
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    async def upsert_item(
        self,
        group: KnowledgeGroup,
        url: str,
        title: str,
        text: str,
        source_page_id: str | None = None,
    ) -> UpsertResult:
        """
        Store a fetched page.

        Raises:
            UpsertError: storing failed; the message starts with "upsert failed"
                so it can be told apart from a fetch failure.
            ContentError: the page cannot be split within the chunk size;
                the item fails without being retried.
        """
        try:
            result = await self._upsert(group, url, title, text, source_page_id)
        except ChunkSizeError as e:
            raise ContentError(f"upsert failed: {e}") from e
        except Exception as e:
            raise UpsertError(f"upsert failed: {e}") from e

        ITEMS_UPSERTED.labels(source_type=group.type.value, status=result).inc()
        logger.debug("item_upserted", group_id=group.id, url=url, result=result)
        return result

    async def _upsert(
        self,
        group: KnowledgeGroup,
        url: str,
        title: str,
        text: str,
        source_page_id: str | None,
    ) -> UpsertResult:
        content_hash = compute_content_hash(f"{title}\n{text}")

        async with self.session_factory() as session:
            items = ScrapeItemRepository(session)
            existing = await items.get_by_url(group.id, url)

            if (
                existing
                and existing.content_hash == content_hash
                and existing.status == ItemStatus.DONE
            ):
                return "skipped"

            splitter = MarkdownSplitter(size=self.chunk_size, context=title or None)
            chunks = splitter.split(text)

            await items.save_content(
                group.id,
                url,
                title=title,
                markdown=text,
                content_hash=content_hash,
                chunks=chunks,
                source_page_id=source_page_id,
            )

        CHUNKS_STORED.inc(len(chunks))
        return "updated" if existing and existing.content_hash else "created"
