"""Storage package."""

from source_sync.storage.database import (
    Base,
    ChunkORM,
    KnowledgeGroupORM,
    ScrapeItemORM,
    get_async_engine,
    get_session_factory,
    init_database,
    init_database_sync,
)
from source_sync.storage.repositories import (
    ChunkRepository,
    KnowledgeGroupRepository,
    ScrapeItemRepository,
    compute_content_hash,
)

__all__ = [
    "Base",
    "ChunkORM",
    "ChunkRepository",
    "KnowledgeGroupORM",
    "KnowledgeGroupRepository",
    "ScrapeItemORM",
    "ScrapeItemRepository",
    "compute_content_hash",
    "get_async_engine",
    "get_session_factory",
    "init_database",
    "init_database_sync",
]
