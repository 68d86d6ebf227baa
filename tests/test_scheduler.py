from datetime import datetime, timedelta, timezone

import pytest

from source_sync.errors import InvalidRequestError, NotFoundError
from source_sync.ingestion import SyncScheduler, get_next_update_time
from source_sync.ingestion.scheduler import create_cron_scheduler
from source_sync.models import GroupStatus, ItemStatus, ScrapeItem
from source_sync.queue import JobState
from source_sync.storage import ScrapeItemRepository

from tests.conftest import FakeSource
from tests.test_pipeline import page

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(pipeline):
    return SyncScheduler(pipeline)


def naive(value):
    return value.replace(tzinfo=None)


@pytest.mark.parametrize(
    "frequency,expected",
    [
        ("daily", NOW + timedelta(days=1)),
        ("weekly", NOW + timedelta(days=7)),
        ("monthly", NOW + timedelta(days=30)),
        ("never", None),
        (None, None),
    ],
)
def test_next_update_time(frequency, expected):
    assert get_next_update_time(frequency, NOW) == expected


async def test_due_groups_are_scheduled(scheduler, create_group, load_group):
    await create_group("due", next_update_at=NOW - timedelta(hours=1), update_frequency="weekly")
    await create_group("busy", next_update_at=NOW - timedelta(hours=1), status="processing")
    await create_group("later", next_update_at=NOW + timedelta(hours=1))
    await create_group("manual")

    summary = await scheduler.update_knowledge_bases(now=NOW)

    assert summary == {"found": 2, "scheduled": 1, "failed": 0}
    due = await load_group("due")
    assert due.status == GroupStatus.PROCESSING
    assert naive(due.next_update_at) == naive(NOW + timedelta(days=7))
    assert (await load_group("busy")).update_process_id is None
    assert (await load_group("later")).status == GroupStatus.PENDING


async def test_never_frequency_clears_next_update(scheduler, create_group, load_group):
    await create_group(next_update_at=NOW - timedelta(days=1))

    await scheduler.update_knowledge_bases(now=NOW)

    assert (await load_group()).next_update_at is None


async def test_failed_schedules_are_counted(scheduler, pipeline, create_group, monkeypatch):
    await create_group("ok", next_update_at=NOW - timedelta(hours=1))
    await create_group("broken", next_update_at=NOW - timedelta(hours=1))
    start_sync = pipeline.start_sync

    async def flaky_start(group_id):
        if group_id == "broken":
            raise ConnectionError("redis unavailable")
        return await start_sync(group_id)

    monkeypatch.setattr(pipeline, "start_sync", flaky_start)

    summary = await scheduler.update_knowledge_bases(now=NOW)

    assert summary == {"found": 2, "scheduled": 2, "failed": 1}


async def test_start_unknown_group(scheduler):
    with pytest.raises(NotFoundError):
        await scheduler.start_group_sync("missing")


async def test_stop_group_cancels_sync(scheduler, pipeline, create_group, load_group, load_items):
    group = await create_group()
    process_id = await scheduler.start_group_sync("group-1")
    await pipeline.schedule_discovery(group, process_id, page("a", "b"))

    pruned = await scheduler.stop_group("group-1")

    assert pruned == 3
    stopped = await load_group()
    assert stopped.status == GroupStatus.DONE
    assert stopped.update_process_id is None
    assert await load_items() == []

    await pipeline.drain()
    assert FakeSource.group_calls == []
    assert FakeSource.item_calls == []


async def test_stop_unknown_group(scheduler):
    with pytest.raises(NotFoundError):
        await scheduler.stop_group("missing")


async def test_single_item_update_keeps_other_items(scheduler, pipeline, create_group, load_group, load_items):
    await create_group(remove_stale_pages=True)
    FakeSource.pages = {None: page("a", "b")}
    await scheduler.start_group_sync("group-1")
    await pipeline.drain()

    item = next(item for item in await load_items() if item.url.endswith("/a"))
    FakeSource.contents = {item.url: "Fresh content"}
    FakeSource.links = {item.url: ["https://docs.example.com/c"]}

    process_id = await scheduler.update_single_item(item.id)
    assert (await load_group()).status == GroupStatus.PROCESSING

    await pipeline.drain()

    group = await load_group()
    assert group.status == GroupStatus.DONE
    assert group.update_process_id == process_id
    items = {item.url.rsplit("/", 1)[-1]: item for item in await load_items()}
    assert set(items) == {"a", "b"}
    assert items["a"].markdown == "Fresh content"
    assert items["a"].status == ItemStatus.DONE


async def test_single_item_update_errors(scheduler, create_group, session_factory):
    await create_group()
    async with session_factory() as session:
        await ScrapeItemRepository(session).create(
            ScrapeItem(id="no-url", knowledge_group_id="group-1")
        )

    with pytest.raises(NotFoundError):
        await scheduler.update_single_item("missing")
    with pytest.raises(InvalidRequestError, match="Item has no URL"):
        await scheduler.update_single_item("no-url")


async def test_cron_scheduler_registers_interval_job(scheduler):
    cron = create_cron_scheduler(scheduler, interval_minutes=15)
    [job] = cron.get_jobs()
    assert job.id == "update-knowledge-bases"
    assert job.trigger.interval == timedelta(minutes=15)
    assert job.func == scheduler.update_knowledge_bases


async def test_start_sync_enqueues_one_group_job(pipeline, create_group):
    await create_group()
    await pipeline.start_sync("group-1")
    jobs = await pipeline.group_queue.get_jobs([JobState.WAITING])
    assert [job.name for job in jobs] == ["update-group"]
