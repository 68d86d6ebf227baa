import pytest

from source_sync.errors import ConfigurationError, FetchError
from source_sync.queue import JobOptions, JobQueue, JobState, Worker
from source_sync.queue.queue import now_ms


@pytest.fixture
def queue(redis):
    return JobQueue(redis, "jobs", prefix="test", default_options=JobOptions(attempts=3, backoff_delay_ms=0))


async def test_jobs_are_fetched_in_insertion_order(queue):
    for n in range(3):
        await queue.add("work", {"n": n})

    fetched = [await queue.fetch_next() for _ in range(3)]
    assert [job.data["n"] for job in fetched] == [0, 1, 2]
    assert all(job.state == JobState.ACTIVE for job in fetched)
    assert await queue.fetch_next() is None

    counts = await queue.counts()
    assert counts["active"] == 3
    assert counts["waiting"] == 0


async def test_complete_moves_job_to_completed(queue):
    job = await queue.add("work", {"n": 1})
    fetched = await queue.fetch_next()
    await queue.complete(fetched)

    stored = await queue.get_job(job.id)
    assert stored.state == JobState.COMPLETED
    assert stored.attempts_made == 1
    counts = await queue.counts()
    assert counts["active"] == 0
    assert counts["completed"] == 1


async def test_delayed_job_waits_until_due(queue):
    job = await queue.add("later", {}, delay_ms=60_000)
    assert (await queue.get_job(job.id)).state == JobState.DELAYED
    assert await queue.fetch_next() is None

    assert await queue.promote_delayed(now=now_ms() + 61_000) == 1
    fetched = await queue.fetch_next()
    assert fetched.id == job.id


async def test_fail_retries_until_attempts_exhausted(queue):
    await queue.add("work", {})

    job = await queue.fetch_next()
    assert await queue.fail(job, "boom") is False
    assert (await queue.get_job(job.id)).state == JobState.DELAYED

    job = await queue.fetch_next()
    assert job.attempts_made == 1
    assert await queue.fail(job, "boom") is False

    job = await queue.fetch_next()
    assert await queue.fail(job, "boom again") is True

    stored = await queue.get_job(job.id)
    assert stored.state == JobState.FAILED
    assert stored.attempts_made == 3
    assert stored.failed_reason == "boom again"
    assert await queue.fetch_next() is None


async def test_backoff_doubles_per_attempt(redis):
    queue = JobQueue(redis, "slow", prefix="test", default_options=JobOptions(backoff_delay_ms=1000))
    job = await queue.add("work", {})
    job = await queue.fetch_next()
    await queue.fail(job, "first")
    assert job.backoff_ms() == 1000

    score = await redis.zscore("test:slow:delayed", job.id)
    assert score >= now_ms() + 500

    job.attempts_made = 2
    assert job.backoff_ms() == 2000
    job.attempts_made = 3
    assert job.backoff_ms() == 4000


async def test_remove_jobs_only_touches_pending_jobs(queue):
    await queue.add("work", {"group": "a"})
    active = await queue.fetch_next()
    await queue.add("work", {"group": "b"})
    await queue.add("work", {"group": "a"}, delay_ms=60_000)
    waiting = await queue.add("work", {"group": "a"})

    removed = await queue.remove_jobs(lambda job: job.data["group"] == "a")
    assert removed == 2

    remaining = await queue.get_jobs([JobState.WAITING, JobState.DELAYED])
    assert [job.data["group"] for job in remaining] == ["b"]
    assert await queue.get_job(waiting.id) is None
    assert (await queue.get_job(active.id)).state == JobState.ACTIVE


async def test_recover_stalled_keeps_order(queue):
    for n in range(3):
        await queue.add("work", {"n": n})
    await queue.fetch_next()
    await queue.fetch_next()

    await queue.recover_stalled()
    fetched = [await queue.fetch_next() for _ in range(3)]
    assert [job.data["n"] for job in fetched] == [0, 1, 2]


async def test_recover_stalled_requeues_active_jobs(queue):
    job = await queue.add("work", {})
    await queue.fetch_next()
    assert (await queue.counts())["active"] == 1

    assert await queue.recover_stalled() == 1
    assert (await queue.get_job(job.id)).state == JobState.WAITING
    assert (await queue.fetch_next()).id == job.id


async def test_finished_jobs_are_trimmed(redis):
    queue = JobQueue(redis, "trim", prefix="test", default_options=JobOptions(remove_on_complete=2))
    ids = []
    for n in range(4):
        ids.append((await queue.add("work", {"n": n})).id)
        await queue.complete(await queue.fetch_next())

    assert (await queue.counts())["completed"] == 2
    assert await queue.get_job(ids[0]) is None
    assert await queue.get_job(ids[-1]) is not None


async def test_worker_emits_completed_with_result(queue):
    async def processor(job):
        return job.data["n"] * 2

    events = []

    async def on_completed(job, result):
        events.append((job.data["n"], result))

    worker = Worker(queue, processor)
    worker.on("completed", on_completed)
    await queue.add("work", {"n": 2})
    await queue.add("work", {"n": 5})

    assert await worker.drain() == 2
    assert events == [(2, 4), (5, 10)]


async def test_worker_retries_transient_errors(queue):
    calls = []

    async def processor(job):
        calls.append(job.attempts_made)
        if len(calls) < 3:
            raise FetchError("temporarily down")
        return "ok"

    completed, failed = [], []

    async def on_completed(job, result):
        completed.append(result)

    async def on_failed(job, reason):
        failed.append(reason)

    worker = Worker(queue, processor)
    worker.on("completed", on_completed)
    worker.on("failed", on_failed)
    await queue.add("work", {})

    assert await worker.drain() == 3
    assert calls == [0, 1, 2]
    assert completed == ["ok"]
    assert failed == []


async def test_worker_fails_unrecoverable_errors_at_once(queue):
    async def processor(job):
        raise ConfigurationError("Unknown source type: ftp")

    failed = []

    async def on_failed(job, reason):
        failed.append((job.attempts_made, reason))

    worker = Worker(queue, processor)
    worker.on("failed", on_failed)
    await queue.add("work", {})

    assert await worker.drain() == 1
    assert failed == [(1, "Unknown source type: ftp")]


async def test_listener_errors_do_not_stop_other_listeners(queue):
    async def processor(job):
        return None

    seen = []

    async def broken(job, result):
        raise RuntimeError("listener bug")

    async def healthy(job, result):
        seen.append(job.id)

    worker = Worker(queue, processor)
    worker.on("completed", broken)
    worker.on("completed", healthy)
    job = await queue.add("work", {})

    await worker.drain()
    assert seen == [job.id]
    assert (await queue.get_job(job.id)).state == JobState.COMPLETED


async def test_unknown_worker_event(queue):
    worker = Worker(queue, processor=None)
    with pytest.raises(ValueError):
        worker.on("progress", None)
