"""Durable job queue on Redis.

Jobs are stored as hashes and move between a waiting list, a delayed sorted
set (scored by due time in ms), an active list and the completed/failed
sorted sets. Delivery is at-least-once: a job left in the active list by a
crashed worker is moved back to waiting by ``recover_stalled``.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger()


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobOptions:
    """Retry and retention policy of a queue."""

    attempts: int = 3
    backoff_delay_ms: int = 2000
    remove_on_complete: int = 100
    remove_on_fail: int = 1000


@dataclass
class Job:
    """A job record."""

    id: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_delay_ms: int = 2000
    state: JobState = JobState.WAITING
    failed_reason: str | None = None
    timestamp: int = 0

    def backoff_ms(self) -> int:
        """Exponential backoff after the latest failed attempt."""
        return self.backoff_delay_ms * 2 ** max(self.attempts_made - 1, 0)

    def to_hash(self) -> dict[str, str]:
        return {
            "name": self.name,
            "data": json.dumps(self.data),
            "attempts_made": str(self.attempts_made),
            "max_attempts": str(self.max_attempts),
            "backoff_delay": str(self.backoff_delay_ms),
            "state": self.state.value,
            "failed_reason": self.failed_reason or "",
            "timestamp": str(self.timestamp),
        }

    @classmethod
    def from_hash(cls, job_id: str, raw: dict[str, str]) -> "Job":
        return cls(
            id=job_id,
            name=raw.get("name", ""),
            data=json.loads(raw.get("data") or "{}"),
            attempts_made=int(raw.get("attempts_made", 0)),
            max_attempts=int(raw.get("max_attempts", 1)),
            backoff_delay_ms=int(raw.get("backoff_delay", 0)),
            state=JobState(raw.get("state", JobState.WAITING.value)),
            failed_reason=raw.get("failed_reason") or None,
            timestamp=int(raw.get("timestamp", 0)),
        )


def now_ms() -> int:
    return int(time.time() * 1000)


class JobQueue:
    """A named queue of jobs stored under ``{prefix}:{name}:*`` keys."""

    def __init__(
        self,
        redis: Redis,
        name: str,
        prefix: str = "source-sync",
        default_options: JobOptions | None = None,
    ):
        self.redis = redis
        self.name = name
        self.prefix = prefix
        self.options = default_options or JobOptions()

    def _key(self, suffix: str) -> str:
        return f"{self.prefix}:{self.name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def add(self, name: str, data: dict[str, Any], delay_ms: int = 0) -> Job:
        """Add a job, optionally delayed."""
        job_id = str(await self.redis.incr(self._key("id")))
        job = Job(
            id=job_id,
            name=name,
            data=data,
            max_attempts=self.options.attempts,
            backoff_delay_ms=self.options.backoff_delay_ms,
            state=JobState.DELAYED if delay_ms > 0 else JobState.WAITING,
            timestamp=now_ms(),
        )

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), mapping=job.to_hash())
            if delay_ms > 0:
                pipe.zadd(self._key("delayed"), {job_id: job.timestamp + delay_ms})
            else:
                pipe.lpush(self._key("wait"), job_id)
            await pipe.execute()

        logger.debug("job_added", queue=self.name, job_id=job_id, job_name=name)
        return job

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self.redis.hgetall(self._job_key(job_id))
        if not raw:
            return None
        return Job.from_hash(job_id, raw)

    async def get_jobs(self, states: Iterable[JobState | str]) -> list[Job]:
        """Jobs in the given states, oldest first within each state."""
        jobs = []
        for state in states:
            for job_id in await self._job_ids(JobState(state)):
                job = await self.get_job(job_id)
                if job is not None:
                    jobs.append(job)
        return jobs

    async def _job_ids(self, state: JobState) -> list[str]:
        if state == JobState.WAITING:
            # Producers push left and consumers pop right
            return list(reversed(await self.redis.lrange(self._key("wait"), 0, -1)))
        if state == JobState.ACTIVE:
            return list(reversed(await self.redis.lrange(self._key("active"), 0, -1)))
        return list(await self.redis.zrange(self._key(state.value), 0, -1))

    async def remove(self, job_id: str) -> bool:
        """Remove a waiting or delayed job. Active and finished jobs are kept."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("wait"), 0, job_id)
            pipe.zrem(self._key("delayed"), job_id)
            removed_waiting, removed_delayed = await pipe.execute()

        if not removed_waiting and not removed_delayed:
            return False
        await self.redis.delete(self._job_key(job_id))
        return True

    async def remove_jobs(
        self,
        predicate: Callable[[Job], bool],
        states: Iterable[JobState] = (JobState.WAITING, JobState.DELAYED),
    ) -> int:
        """Remove the waiting/delayed jobs matching the predicate."""
        removed = 0
        for job in await self.get_jobs(states):
            if predicate(job) and await self.remove(job.id):
                removed += 1
        return removed

    async def promote_delayed(self, now: int | None = None) -> int:
        """Move due delayed jobs to waiting."""
        now = now if now is not None else now_ms()
        due = await self.redis.zrangebyscore(self._key("delayed"), "-inf", now)
        promoted = 0
        for job_id in due:
            # Only the caller that removed the entry promotes it
            if await self.redis.zrem(self._key("delayed"), job_id) != 1:
                continue
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._job_key(job_id), "state", JobState.WAITING.value)
                pipe.lpush(self._key("wait"), job_id)
                await pipe.execute()
            promoted += 1
        return promoted

    async def fetch_next(self) -> Job | None:
        """Move the oldest waiting job to active and return it."""
        await self.promote_delayed()
        job_id = await self.redis.lmove(self._key("wait"), self._key("active"), "RIGHT", "LEFT")
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            await self.redis.lrem(self._key("active"), 1, job_id)
            return None

        job.state = JobState.ACTIVE
        await self.redis.hset(self._job_key(job_id), "state", JobState.ACTIVE.value)
        return job

    async def complete(self, job: Job) -> None:
        job.attempts_made += 1
        job.state = JobState.COMPLETED
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.hset(
                self._job_key(job.id),
                mapping={"state": job.state.value, "attempts_made": str(job.attempts_made)},
            )
            pipe.zadd(self._key("completed"), {job.id: now_ms()})
            await pipe.execute()
        await self._trim(JobState.COMPLETED, self.options.remove_on_complete)

    async def fail(self, job: Job, reason: str, retry: bool = True) -> bool:
        """
        Record a failed attempt.

        The job is retried with exponential backoff while attempts remain.
        Returns True when the failure is terminal.
        """
        job.attempts_made += 1
        job.failed_reason = reason
        terminal = not retry or job.attempts_made >= job.max_attempts
        job.state = JobState.FAILED if terminal else JobState.DELAYED

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "state": job.state.value,
                    "attempts_made": str(job.attempts_made),
                    "failed_reason": reason,
                },
            )
            if terminal:
                pipe.zadd(self._key("failed"), {job.id: now_ms()})
            else:
                pipe.zadd(self._key("delayed"), {job.id: now_ms() + job.backoff_ms()})
            await pipe.execute()

        if terminal:
            await self._trim(JobState.FAILED, self.options.remove_on_fail)
        return terminal

    async def recover_stalled(self) -> int:
        """Move jobs left active by a stopped worker back to waiting."""
        recovered = 0
        while True:
            # Oldest active job ends up next in line
            job_id = await self.redis.lmove(
                self._key("active"), self._key("wait"), "LEFT", "RIGHT"
            )
            if job_id is None:
                break
            await self.redis.hset(self._job_key(job_id), "state", JobState.WAITING.value)
            recovered += 1
        if recovered:
            logger.warning("stalled_jobs_recovered", queue=self.name, count=recovered)
        return recovered

    async def counts(self) -> dict[str, int]:
        return {
            JobState.WAITING.value: await self.redis.llen(self._key("wait")),
            JobState.ACTIVE.value: await self.redis.llen(self._key("active")),
            JobState.DELAYED.value: await self.redis.zcard(self._key("delayed")),
            JobState.COMPLETED.value: await self.redis.zcard(self._key("completed")),
            JobState.FAILED.value: await self.redis.zcard(self._key("failed")),
        }

    async def _trim(self, state: JobState, keep: int) -> None:
        """Keep only the newest ``keep`` finished jobs."""
        key = self._key(state.value)
        stale = await self.redis.zrange(key, 0, -(keep + 1))
        if not stale:
            return
        async with self.redis.pipeline(transaction=True) as pipe:
            for job_id in stale:
                pipe.delete(self._job_key(job_id))
            pipe.zrem(key, *stale)
            await pipe.execute()
