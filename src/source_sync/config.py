"""Configuration management using pydantic-settings."""

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SOURCE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Paths
    data_dir: Path = Path("data")
    database_url: str = "sqlite+aiosqlite:///data/source_sync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 3007
    debug: bool = False
    api_token: str | None = None
    cron_secret: str | None = None

    # Queues
    redis_url: str = "redis://localhost:6379/0"
    queue_prefix: str = "source-sync"
    group_queue_name: str = "group"
    item_queue_name: str = "item"
    item_concurrency: int = 10
    job_attempts: int = 3
    job_backoff_ms: int = 2000
    worker_poll_interval: float = 0.5

    # In-process periodic trigger (minutes, disabled when unset)
    cron_interval_minutes: int | None = None

    # Chunking
    chunk_max_chars: int = 7680

    # Sources
    web_max_pages: int = 5000
    http_timeout_seconds: float = 30.0
    github_token: str | None = None
    youtube_api_key: str | None = None

    # Billing collaborator (optional)
    credits_url: str | None = None

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
