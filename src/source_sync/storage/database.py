"""Database setup with SQLAlchemy async support (SQLite for local, Postgres for prod)."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy import JSON as SA_JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, relationship

from source_sync.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# JSONB on Postgres, plain JSON elsewhere
JSONType = SA_JSON().with_variant(JSONB, "postgresql")


class KnowledgeGroupORM(Base):
    """Knowledge groups table - configured sources and their sync state."""

    __tablename__ = "knowledge_groups"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    status = Column(String, default="pending", nullable=False)
    update_process_id = Column(String, nullable=True)
    next_update_at = Column(DateTime(timezone=True), nullable=True)
    update_frequency = Column(String, default="never", nullable=False)

    url = Column(String, nullable=True)
    urls = Column(JSONType, default=list)
    skip_page_regex = Column(String, nullable=True)
    allowed_github_issue_states = Column(String, nullable=True)
    remove_stale_pages = Column(Boolean, default=False, nullable=False)

    github_token = Column(String, nullable=True)
    linear_api_key = Column(String, nullable=True)
    linear_skip_issue_statuses = Column(String, nullable=True)
    confluence_host = Column(String, nullable=True)
    confluence_email = Column(String, nullable=True)
    confluence_api_key = Column(String, nullable=True)
    notion_secret = Column(String, nullable=True)

    # Group jobs of the current process that have not settled yet
    pending_discovery_jobs = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    items = relationship(
        "ScrapeItemORM",
        back_populates="knowledge_group",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_knowledge_groups_next_update", "next_update_at"),
    )


class ScrapeItemORM(Base):
    """Scrape items table - individual pages/issues/videos of a group."""

    __tablename__ = "scrape_items"

    id = Column(String, primary_key=True)
    knowledge_group_id = Column(
        String, ForeignKey("knowledge_groups.id", ondelete="CASCADE"), nullable=False
    )
    url = Column(String, nullable=True)
    source_page_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    markdown = Column(Text, nullable=True)
    content_hash = Column(String, nullable=True)

    status = Column(String, default="pending", nullable=False)  # "pending" | "done" | "failed"
    will_update = Column(Boolean, default=False, nullable=False)
    error = Column(Text, nullable=True)
    last_process_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    knowledge_group = relationship("KnowledgeGroupORM", back_populates="items")
    chunks = relationship("ChunkORM", back_populates="scrape_item", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("knowledge_group_id", "url", name="uq_scrape_items_group_url"),
        Index("idx_scrape_items_group", "knowledge_group_id"),
        Index("idx_scrape_items_will_update", "knowledge_group_id", "will_update"),
    )


class ChunkORM(Base):
    """Chunks table - size-bounded markdown slices handed to the index."""

    __tablename__ = "chunks"

    id = Column(String, primary_key=True)  # "{scrape_item_id}:{chunk_index}"
    scrape_item_id = Column(
        String, ForeignKey("scrape_items.id", ondelete="CASCADE"), nullable=False
    )
    chunk_index = Column(Integer, nullable=False)

    content = Column(Text, nullable=False)
    content_hash = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    scrape_item = relationship("ScrapeItemORM", back_populates="chunks")

    __table_args__ = (
        Index("idx_chunks_scrape_item", "scrape_item_id"),
    )


_async_engine = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


async def get_async_engine():
    """Get or create the async database engine."""
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        db_url = settings.database_url

        engine_kwargs = {
            "echo": settings.debug,
        }

        # Pooling options should NOT be forced on SQLite.
        if not _is_sqlite(db_url):
            engine_kwargs.update(
                {
                    "pool_pre_ping": True,
                    "pool_size": 5,
                    "max_overflow": 5,
                }
            )

        _async_engine = create_async_engine(db_url, **engine_kwargs)

    return _async_engine


async def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the shared session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        engine = await get_async_engine()
        _async_session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return _async_session_factory


async def init_database(engine=None):
    """Initialize the database, creating tables if they don't exist."""
    engine = engine or await get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def init_database_sync():
    """
    Synchronously initialize DB (for CLI scripts).
    Converts async DB URLs to sync driver equivalents.
    """
    settings = get_settings()
    url = make_url(settings.database_url)

    # SQLite async -> sqlite sync
    if url.drivername.endswith("+aiosqlite"):
        url = url.set(drivername="sqlite")

    # Postgres asyncpg -> psycopg
    elif url.drivername.endswith("+asyncpg"):
        url = url.set(drivername="postgresql+psycopg")

    engine = create_engine(url, echo=settings.debug, pool_pre_ping=True)
    Base.metadata.create_all(engine)
    return engine
