import os
import tempfile

# Settings are cached on first use, so point them at a scratch directory first
os.environ.setdefault("SOURCE_SYNC_DATA_DIR", tempfile.mkdtemp(prefix="source-sync-"))

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from source_sync.config import get_settings
from source_sync.ingestion import SyncPipeline
from source_sync.ingestion.sources import BaseSource, SourceRegistry
from source_sync.models import (
    DiscoveredItem,
    Discovery,
    ItemResult,
    KnowledgeGroup,
    KnowledgeGroupType,
    PageContent,
)
from source_sync.queue import JobOptions, JobQueue
from source_sync.storage import KnowledgeGroupRepository, ScrapeItemRepository, init_database


class FakeSource(BaseSource):
    """
    Serves discovery pages and item contents from dicts.

    ``pages`` maps a cursor (None for the first page) to a Discovery;
    ``contents`` maps an item url to its text. Urls in ``failing`` and
    cursors in ``group_errors`` raise the mapped exception.
    """

    type = KnowledgeGroupType.WEB

    pages: dict = {}
    contents: dict = {}
    links: dict = {}
    failing: dict = {}
    group_errors: dict = {}
    group_calls: list = []
    item_calls: list = []

    async def update_group(self, job, group):
        FakeSource.group_calls.append(job.cursor)
        if job.cursor in FakeSource.group_errors:
            raise FakeSource.group_errors[job.cursor]
        return FakeSource.pages.get(job.cursor, Discovery())

    async def update_item(self, job, group):
        FakeSource.item_calls.append(job.url)
        if job.url in FakeSource.failing:
            raise FakeSource.failing[job.url]
        text = FakeSource.contents.get(job.url, f"Content of {job.url}")
        return ItemResult(
            page=PageContent(title=job.url.rsplit("/", 1)[-1], text=text),
            discovered=[DiscoveredItem(url=url) for url in FakeSource.links.get(job.url, [])],
        )


class FakeCredits:
    def __init__(self, has_credits=True):
        self.value = has_credits
        self.calls = []

    async def has_credits(self, user_id):
        self.calls.append(user_id)
        return self.value


@pytest.fixture(autouse=True)
def reset_fake_source():
    FakeSource.pages = {}
    FakeSource.contents = {}
    FakeSource.links = {}
    FakeSource.failing = {}
    FakeSource.group_errors = {}
    FakeSource.group_calls = []
    FakeSource.item_calls = []
    yield


@pytest.fixture
def settings_env(monkeypatch):
    """Set SOURCE_SYNC_* variables for one test and rebuild the cached settings."""

    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(f"SOURCE_SYNC_{key.upper()}", str(value))
        get_settings.cache_clear()

    yield apply
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_database(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def queues(redis):
    options = JobOptions(attempts=2, backoff_delay_ms=0)
    return (
        JobQueue(redis, "group", prefix="test", default_options=options),
        JobQueue(redis, "item", prefix="test", default_options=options),
    )


@pytest.fixture
def credits():
    return FakeCredits()


@pytest.fixture
def registry():
    sources = {group_type: FakeSource for group_type in KnowledgeGroupType}
    return SourceRegistry(sources=sources)


@pytest.fixture
def pipeline(session_factory, queues, registry, credits):
    group_queue, item_queue = queues
    return SyncPipeline(
        session_factory,
        group_queue,
        item_queue,
        registry=registry,
        credits=credits,
        item_concurrency=2,
        poll_interval=0.01,
    )


@pytest.fixture
def create_group(session_factory):
    async def create(group_id="group-1", **fields):
        fields.setdefault("user_id", "user-1")
        fields.setdefault("type", KnowledgeGroupType.WEB)
        fields.setdefault("url", "https://docs.example.com")
        async with session_factory() as session:
            return await KnowledgeGroupRepository(session).create(
                KnowledgeGroup(id=group_id, **fields)
            )

    return create


@pytest.fixture
def load_group(session_factory):
    async def load(group_id="group-1"):
        async with session_factory() as session:
            return await KnowledgeGroupRepository(session).get(group_id)

    return load


@pytest.fixture
def load_items(session_factory):
    async def load(group_id="group-1"):
        async with session_factory() as session:
            return await ScrapeItemRepository(session).list_by_group(group_id)

    return load
