from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

# Queue Metrics
JOBS_PROCESSED = Counter(
    "sync_jobs_total",
    "Total number of processed jobs",
    ["queue", "status"]
)

JOB_LATENCY = Histogram(
    "sync_job_latency_seconds",
    "Job processing latency in seconds",
    ["queue"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

# Sync Metrics
GROUPS_COMPLETED = Counter(
    "sync_groups_completed_total",
    "Total number of knowledge groups that finished a sync",
    ["status"]
)

ITEMS_FAILED = Counter(
    "sync_items_failed_total",
    "Total number of scrape items that failed terminally"
)

ITEMS_UPSERTED = Counter(
    "sync_items_upserted_total",
    "Total number of fetched items handed to the reconciler",
    ["source_type", "status"]
)

CHUNKS_STORED = Counter(
    "sync_chunks_stored_total",
    "Total number of chunks written"
)

def get_metrics():
    """Return latest metrics in Prometheus format."""
    return generate_latest(), CONTENT_TYPE_LATEST
