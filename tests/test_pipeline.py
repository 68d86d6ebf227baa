from prometheus_client import REGISTRY
from sqlalchemy import update

from source_sync.errors import ConfigurationError, FetchError
from source_sync.ingestion import ContentReconciler
from source_sync.models import DiscoveredItem, Discovery, GroupStatus, ItemStatus
from source_sync.queue import JobOptions, JobState
from source_sync.storage import ChunkRepository, KnowledgeGroupORM, ScrapeItemRepository

from tests.conftest import FakeSource

BASE = "https://docs.example.com"


def page(*names, cursor=None):
    return Discovery(
        items=[DiscoveredItem(url=f"{BASE}/{name}") for name in names],
        next_cursor=cursor,
    )


def urls(items):
    return {item.url.rsplit("/", 1)[-1] for item in items}


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0


async def test_sync_follows_pages_until_done(pipeline, create_group, load_group, load_items, session_factory):
    await create_group()
    FakeSource.pages = {None: page("a", "b", cursor="p2"), "p2": page("c")}

    process_id = await pipeline.start_sync("group-1")
    await pipeline.drain()

    group = await load_group()
    assert group.status == GroupStatus.DONE
    assert group.update_process_id == process_id
    assert group.pending_discovery_jobs == 0
    assert group.last_synced_at is not None
    assert FakeSource.group_calls == [None, "p2"]

    items = await load_items()
    assert urls(items) == {"a", "b", "c"}
    assert all(item.status == ItemStatus.DONE for item in items)
    assert not any(item.will_update for item in items)

    async with session_factory() as session:
        assert await ChunkRepository(session).count() == 3


async def test_cursor_rides_on_last_new_item(pipeline, create_group):
    group = await create_group()
    process_id = await pipeline.start_sync("group-1")

    scheduled = await pipeline.schedule_discovery(group, process_id, page("a", "b", "c", cursor="next"))
    assert scheduled == 3

    jobs = await pipeline.item_queue.get_jobs([JobState.WAITING])
    assert [job.data["url"].rsplit("/", 1)[-1] for job in jobs] == ["a", "b", "c"]
    assert [job.data.get("cursor") for job in jobs] == [None, None, "next"]


async def test_rediscovered_items_are_scheduled_once_per_process(pipeline, create_group):
    group = await create_group()
    process_id = await pipeline.start_sync("group-1")

    assert await pipeline.schedule_discovery(group, process_id, page("a", "b")) == 2
    # Only the already scheduled items come back, so the cursor goes to a group job
    assert await pipeline.schedule_discovery(group, process_id, page("a", "b", cursor="p3")) == 0

    assert len(await pipeline.item_queue.get_jobs([JobState.WAITING])) == 2
    group_jobs = await pipeline.group_queue.get_jobs([JobState.WAITING])
    assert [job.data.get("cursor") for job in group_jobs] == [None, "p3"]


async def test_empty_page_with_cursor_continues_discovery(pipeline, create_group, load_group, load_items):
    await create_group()
    FakeSource.pages = {None: page(cursor="p2"), "p2": page("a")}

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.group_calls == [None, "p2"]
    assert (await load_group()).status == GroupStatus.DONE
    assert urls(await load_items()) == {"a"}


async def test_empty_group_completes(pipeline, create_group, load_group):
    await create_group()

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert (await load_group()).status == GroupStatus.DONE


async def test_completion_check_is_idempotent(pipeline, create_group, load_group):
    await create_group()
    FakeSource.pages = {None: page("a")}
    process_id = await pipeline.start_sync("group-1")
    await pipeline.drain()

    completed = sample("sync_groups_completed_total", status="done")
    synced_at = (await load_group()).last_synced_at

    assert await pipeline.check_completion("group-1", process_id) == "noop"
    assert await pipeline.check_completion("group-1", process_id) == "noop"

    group = await load_group()
    assert group.status == GroupStatus.DONE
    assert group.last_synced_at == synced_at
    assert sample("sync_groups_completed_total", status="done") == completed


async def test_cancellation_prunes_delayed_jobs(pipeline, create_group, load_items, session_factory):
    await create_group()
    FakeSource.pages = {None: page("a", "b")}
    await pipeline.start_sync("group-1")
    await pipeline.drain()

    # Second sync: every fetch fails once and waits a minute before retrying
    pipeline.item_queue.options = JobOptions(attempts=3, backoff_delay_ms=60_000)
    FakeSource.failing = {f"{BASE}/a": FetchError("down"), f"{BASE}/b": FetchError("down")}
    process_id = await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert (await pipeline.item_queue.counts())["delayed"] == 2
    assert all(item.will_update for item in await load_items())

    async with session_factory() as session:
        await session.execute(
            update(KnowledgeGroupORM)
            .where(KnowledgeGroupORM.id == "group-1")
            .values(status=GroupStatus.PENDING.value)
        )
        await session.commit()

    assert await pipeline.check_completion("group-1", process_id) == "cancelled"

    counts = await pipeline.item_queue.counts()
    assert counts["delayed"] == 0
    assert counts["waiting"] == 0
    items = await load_items()
    assert urls(items) == {"a", "b"}
    assert not any(item.will_update for item in items)


async def test_cancellation_deletes_unfetched_items(pipeline, create_group, load_items, session_factory):
    group = await create_group()
    process_id = await pipeline.start_sync("group-1")
    await pipeline.schedule_discovery(group, process_id, page("new"))

    async with session_factory() as session:
        await session.execute(
            update(KnowledgeGroupORM)
            .where(KnowledgeGroupORM.id == "group-1")
            .values(status=GroupStatus.DONE.value, update_process_id=None)
        )
        await session.commit()

    assert await pipeline.check_completion("group-1", process_id) == "cancelled"
    assert await load_items() == []
    assert await pipeline.item_queue.get_jobs([JobState.WAITING]) == []


async def test_superseded_process_jobs_are_pruned(pipeline, create_group):
    await create_group()
    old_process = await pipeline.start_sync("group-1")
    await pipeline.schedule_item("group-1", old_process, f"{BASE}/a")
    new_process = await pipeline.start_sync("group-1")

    assert await pipeline.check_completion("group-1", old_process) == "superseded"

    assert await pipeline.item_queue.get_jobs([JobState.WAITING]) == []
    group_jobs = await pipeline.group_queue.get_jobs([JobState.WAITING])
    assert [job.data["process_id"] for job in group_jobs] == [new_process]


async def test_jobs_of_old_process_are_discarded(pipeline, create_group, load_group):
    await create_group()
    FakeSource.pages = {None: page("a")}
    await pipeline.start_sync("group-1")
    new_process = await pipeline.start_sync("group-1")

    await pipeline.drain()

    assert FakeSource.group_calls == [None]
    group = await load_group()
    assert group.status == GroupStatus.DONE
    assert group.update_process_id == new_process


async def test_failed_item_keeps_pagination_going(pipeline, create_group, load_group, load_items):
    await create_group()
    FakeSource.pages = {None: page("a", "b", cursor="p2"), "p2": page("c")}
    FakeSource.failing = {f"{BASE}/b": FetchError("GET b returned 503")}
    failed_before = sample("sync_items_failed_total")

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.group_calls == [None, "p2"]
    assert FakeSource.item_calls.count(f"{BASE}/b") == 2
    assert (await load_group()).status == GroupStatus.DONE

    items = {item.url.rsplit("/", 1)[-1]: item for item in await load_items()}
    assert items["b"].status == ItemStatus.FAILED
    assert items["b"].error == "GET b returned 503"
    assert items["c"].status == ItemStatus.DONE
    assert not any(item.will_update for item in items.values())
    assert sample("sync_items_failed_total") == failed_before + 1


async def test_failed_discovery_marks_group_error(pipeline, create_group, load_group, load_items):
    await create_group()
    FakeSource.pages = {None: page("a", cursor="p2")}
    FakeSource.group_errors = {"p2": ConfigurationError("Invalid GitHub URL: nope")}

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.group_calls == [None, "p2"]
    group = await load_group()
    assert group.status == GroupStatus.ERROR
    assert group.last_error == "Invalid GitHub URL: nope"
    assert group.pending_discovery_jobs == 0
    assert [item.status for item in await load_items()] == [ItemStatus.DONE]


async def test_transient_discovery_errors_are_retried(pipeline, create_group, load_group):
    await create_group()
    FakeSource.group_errors = {None: FetchError("rate limited")}

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    # Two attempts, then the group is failed
    assert FakeSource.group_calls == [None, None]
    assert (await load_group()).status == GroupStatus.ERROR


async def test_no_credits_stops_work(pipeline, create_group, credits, load_group, load_items):
    await create_group()
    FakeSource.pages = {None: page("a")}
    credits.value = False

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert credits.calls == ["user-1"]
    assert FakeSource.group_calls == []
    assert (await load_group()).status == GroupStatus.DONE
    assert await load_items() == []


async def test_stale_items_are_removed(pipeline, create_group, load_items):
    await create_group(remove_stale_pages=True)
    FakeSource.pages = {None: page("a", "b", "c")}
    await pipeline.start_sync("group-1")
    await pipeline.drain()

    FakeSource.pages = {None: page("a", "b")}
    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert urls(await load_items()) == {"a", "b"}


async def test_stale_items_are_kept_by_default(pipeline, create_group, load_items):
    await create_group()
    FakeSource.pages = {None: page("a", "b")}
    await pipeline.start_sync("group-1")
    await pipeline.drain()

    FakeSource.pages = {None: page("a")}
    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert urls(await load_items()) == {"a", "b"}


async def test_crawled_links_respect_page_limit(pipeline, create_group, load_items):
    await create_group()
    pipeline.web_max_pages = 2
    FakeSource.pages = {None: page("a")}
    FakeSource.links = {f"{BASE}/a": [f"{BASE}/b", f"{BASE}/c", f"{BASE}/d"]}

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert urls(await load_items()) == {"a", "b"}


async def test_just_this_item_does_not_crawl(pipeline, create_group, load_items):
    await create_group()
    FakeSource.links = {f"{BASE}/a": [f"{BASE}/b"]}
    process_id = await pipeline.start_sync("group-1")
    await pipeline.group_queue.remove_jobs(lambda job: True)

    await pipeline.schedule_item("group-1", process_id, f"{BASE}/a", just_this=True)
    await pipeline.item_worker.drain()

    assert urls(await load_items()) == {"a"}
    assert FakeSource.item_calls == [f"{BASE}/a"]


async def test_inline_pages_skip_the_fetch(pipeline, create_group, load_group, load_items, session_factory):
    from source_sync.models import UrlPage

    await create_group()
    FakeSource.pages = {
        None: Discovery(pages=[UrlPage(url=f"{BASE}/d1", title="Discussion", text="# Discussion\n\nBody")])
    }

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.item_calls == []
    items = await load_items()
    assert [(item.title, item.markdown) for item in items] == [("Discussion", "# Discussion\n\nBody")]
    assert (await load_group()).status == GroupStatus.DONE


async def test_failed_last_item_hands_off_cursor_before_settling(
    pipeline, create_group, load_group, load_items, monkeypatch
):
    await create_group()
    FakeSource.pages = {None: page("b", cursor="p2"), "p2": page("c")}
    FakeSource.failing = {f"{BASE}/b": ConfigurationError("Invalid URL")}

    checks = []
    mark_failed = ScrapeItemRepository.mark_failed

    async def check_then_mark_failed(self, group_id, url, process_id, error):
        # Another item settling at this moment must not finish the group
        checks.append(await pipeline.check_completion(group_id, process_id))
        await mark_failed(self, group_id, url, process_id, error)

    monkeypatch.setattr(ScrapeItemRepository, "mark_failed", check_then_mark_failed)

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert checks == ["pending"]
    assert FakeSource.group_calls == [None, "p2"]
    assert (await load_group()).status == GroupStatus.DONE
    items = {item.url.rsplit("/", 1)[-1]: item.status for item in await load_items()}
    assert items == {"b": ItemStatus.FAILED, "c": ItemStatus.DONE}


async def test_partial_enqueue_is_completed_on_retry(
    pipeline, create_group, load_group, load_items, monkeypatch
):
    await create_group()
    FakeSource.pages = {None: page("a", "b", "c")}
    add = pipeline.item_queue.add
    calls = []

    async def flaky_add(name, data, delay_ms=0):
        calls.append(data["url"])
        if len(calls) == 2:
            raise ConnectionError("redis unavailable")
        return await add(name, data, delay_ms)

    monkeypatch.setattr(pipeline.item_queue, "add", flaky_add)

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.group_calls == [None, None]
    assert sorted(FakeSource.item_calls) == [f"{BASE}/a", f"{BASE}/b", f"{BASE}/c"]
    assert (await load_group()).status == GroupStatus.DONE
    items = await load_items()
    assert all(item.status == ItemStatus.DONE for item in items)
    assert not any(item.will_update for item in items)


async def test_flagged_items_without_a_job_are_requeued(pipeline, create_group, session_factory):
    group = await create_group()
    process_id = await pipeline.start_sync("group-1")
    async with session_factory() as session:
        await ScrapeItemRepository(session).mark_scheduled("group-1", f"{BASE}/a", process_id)

    assert await pipeline.schedule_discovery(group, process_id, page("a", "b")) == 2
    assert await pipeline.schedule_discovery(group, process_id, page("a", "b")) == 0

    jobs = await pipeline.item_queue.get_jobs([JobState.WAITING])
    assert [job.data["url"] for job in jobs] == [f"{BASE}/a", f"{BASE}/b"]


async def test_unsplittable_content_fails_without_retry(
    pipeline, create_group, load_group, load_items, session_factory
):
    await create_group()
    pipeline.reconciler = ContentReconciler(session_factory, chunk_size=10)
    FakeSource.pages = {None: page("a")}

    await pipeline.start_sync("group-1")
    await pipeline.drain()

    assert FakeSource.item_calls == [f"{BASE}/a"]
    [item] = await load_items()
    assert item.status == ItemStatus.FAILED
    assert item.error.startswith("upsert failed:")
    assert (await load_group()).status == GroupStatus.DONE
