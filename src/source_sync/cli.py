"""Command-line interface for source-sync."""

import argparse
import asyncio
import signal

import structlog
import uvicorn
from redis.asyncio import Redis

from source_sync.config import get_settings
from source_sync.ingestion import SyncPipeline, SyncScheduler, build_queues
from source_sync.ingestion.scheduler import create_cron_scheduler
from source_sync.storage import get_session_factory, init_database, init_database_sync

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


async def _create_pipeline() -> tuple[SyncPipeline, Redis]:
    settings = get_settings()
    await init_database()
    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    group_queue, item_queue = build_queues(redis, settings)
    pipeline = SyncPipeline(await get_session_factory(), group_queue, item_queue)
    return pipeline, redis


def cmd_serve(args):
    """Start the API server."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    logger.info("starting_server", host=host, port=port)

    uvicorn.run(
        "source_sync.api.app:app",
        host=host,
        port=port,
        reload=args.reload,
    )


async def _run_worker():
    settings = get_settings()
    pipeline, redis = await _create_pipeline()

    cron = None
    if settings.cron_interval_minutes:
        cron = create_cron_scheduler(SyncScheduler(pipeline), settings.cron_interval_minutes)
        cron.start()
        logger.info("cron_started", interval_minutes=settings.cron_interval_minutes)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(pipeline.close()))

    try:
        await pipeline.run_workers()
    finally:
        if cron is not None:
            cron.shutdown(wait=False)
        await redis.aclose()
        logger.info("worker_shutdown")


def cmd_worker(args):
    """Run the group and item workers."""
    logger.info("starting_worker")
    asyncio.run(_run_worker())


async def _sync_due():
    pipeline, redis = await _create_pipeline()
    try:
        return await SyncScheduler(pipeline).update_knowledge_bases()
    finally:
        await redis.aclose()


def cmd_sync_due(args):
    """Schedule syncs for all groups whose next update is due."""
    summary = asyncio.run(_sync_due())
    logger.info("sync_due_complete", **summary)


async def _sync_group(group_id: str, drain: bool):
    pipeline, redis = await _create_pipeline()
    try:
        process_id = await SyncScheduler(pipeline).start_group_sync(group_id)
        handled = await pipeline.drain() if drain else 0
        return process_id, handled
    finally:
        await redis.aclose()


def cmd_sync_group(args):
    """Start a sync of one group, optionally processing it inline."""
    process_id, handled = asyncio.run(_sync_group(args.group_id, args.drain))
    logger.info("sync_group_scheduled", group_id=args.group_id, process_id=process_id, jobs=handled)


def cmd_init_db(args):
    """Create database tables."""
    init_database_sync()
    logger.info("database_initialized", url=get_settings().database_url)


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="source-sync",
        description="Knowledge source synchronization service",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", type=str, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    serve_parser.set_defaults(func=cmd_serve)

    # worker command
    worker_parser = subparsers.add_parser("worker", help="Run the sync workers")
    worker_parser.set_defaults(func=cmd_worker)

    # sync-due command
    due_parser = subparsers.add_parser("sync-due", help="Schedule syncs of due groups")
    due_parser.set_defaults(func=cmd_sync_due)

    # sync-group command
    group_parser = subparsers.add_parser("sync-group", help="Start a sync of one group")
    group_parser.add_argument("group_id", help="Knowledge group ID")
    group_parser.add_argument(
        "--drain", action="store_true", help="Process the queued jobs in this process"
    )
    group_parser.set_defaults(func=cmd_sync_group)

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=cmd_init_db)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
