"""Data models for knowledge groups, scrape items and chunks."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class KnowledgeGroupType(str, Enum):
    """Source types a knowledge group can sync from."""

    WEB = "web"
    GITHUB_ISSUES = "github_issues"
    GITHUB_DISCUSSIONS = "github_discussions"
    LINEAR = "linear"
    LINEAR_PROJECTS = "linear_projects"
    CONFLUENCE = "confluence"
    NOTION = "notion"
    YOUTUBE_CHANNEL = "youtube_channel"
    YOUTUBE_VIDEOS = "youtube_videos"
    UPLOAD = "upload"


class GroupStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class ItemStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class UpdateFrequency(str, Enum):
    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class KnowledgeGroup(BaseModel):
    """A configured content source plus its sync settings."""

    id: str
    user_id: str
    type: KnowledgeGroupType
    status: GroupStatus = GroupStatus.PENDING
    update_process_id: str | None = None
    next_update_at: datetime | None = None
    update_frequency: UpdateFrequency = UpdateFrequency.NEVER

    url: str | None = None
    urls: list[str] = Field(default_factory=list)
    skip_page_regex: str | None = None
    allowed_github_issue_states: str | None = None
    remove_stale_pages: bool = False

    # Source credentials
    github_token: str | None = None
    linear_api_key: str | None = None
    linear_skip_issue_statuses: str | None = None
    confluence_host: str | None = None
    confluence_email: str | None = None
    confluence_api_key: str | None = None
    notion_secret: str | None = None

    pending_discovery_jobs: int = 0
    last_error: str | None = None
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ScrapeItem(BaseModel):
    """One discovered content unit (page, issue, video) of a group."""

    id: str
    knowledge_group_id: str
    url: str | None = None
    source_page_id: str | None = None
    title: str | None = None
    markdown: str | None = None
    content_hash: str | None = None
    status: ItemStatus = ItemStatus.PENDING
    will_update: bool = False
    error: str | None = None
    last_process_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GroupSyncState(BaseModel):
    """The columns of a group the completion check reads."""

    id: str
    status: GroupStatus
    update_process_id: str | None = None
    pending_discovery_jobs: int = 0
    remove_stale_pages: bool = False


class Chunk(BaseModel):
    """A stored, size-bounded slice of an item's markdown."""

    id: str  # "{scrape_item_id}:{chunk_index}"
    scrape_item_id: str
    chunk_index: int
    content: str
    content_hash: str
