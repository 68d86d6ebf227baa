"""Observability package."""

from source_sync.observability.metrics import (
    CHUNKS_STORED,
    GROUPS_COMPLETED,
    ITEMS_FAILED,
    ITEMS_UPSERTED,
    JOB_LATENCY,
    JOBS_PROCESSED,
    get_metrics,
)

__all__ = [
    "CHUNKS_STORED",
    "GROUPS_COMPLETED",
    "ITEMS_FAILED",
    "ITEMS_UPSERTED",
    "JOB_LATENCY",
    "JOBS_PROCESSED",
    "get_metrics",
]
