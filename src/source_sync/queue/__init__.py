"""Job queue package."""

from source_sync.queue.queue import Job, JobOptions, JobQueue, JobState
from source_sync.queue.worker import Worker

__all__ = [
    "Job",
    "JobOptions",
    "JobQueue",
    "JobState",
    "Worker",
]
