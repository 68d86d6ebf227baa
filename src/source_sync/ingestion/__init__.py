"""Ingestion package."""

from source_sync.ingestion.chunker import MarkdownChunk, MarkdownSplitter, join_chunks, split_markdown
from source_sync.ingestion.credits import CreditChecker, HttpCreditChecker, UnlimitedCredits
from source_sync.ingestion.parser import HtmlParser, html_to_markdown
from source_sync.ingestion.pipeline import SyncPipeline, build_queues
from source_sync.ingestion.reconciler import ContentReconciler
from source_sync.ingestion.scheduler import SyncScheduler, get_next_update_time

__all__ = [
    "ContentReconciler",
    "CreditChecker",
    "HtmlParser",
    "HttpCreditChecker",
    "MarkdownChunk",
    "MarkdownSplitter",
    "SyncPipeline",
    "SyncScheduler",
    "UnlimitedCredits",
    "build_queues",
    "get_next_update_time",
    "html_to_markdown",
    "join_chunks",
    "split_markdown",
]
