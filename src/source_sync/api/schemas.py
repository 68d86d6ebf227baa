"""API Pydantic schemas for request/response validation."""

from pydantic import BaseModel, ConfigDict, Field


# ===== Sync triggers =====

class GroupRequestSchema(BaseModel):
    """Request naming a knowledge group."""

    model_config = ConfigDict(populate_by_name=True)

    knowledge_group_id: str = Field(..., alias="knowledgeGroupId", min_length=1)


class ItemRequestSchema(BaseModel):
    """Request naming a scrape item."""

    model_config = ConfigDict(populate_by_name=True)

    scrape_item_id: str = Field(..., alias="scrapeItemId", min_length=1)


class MessageResponseSchema(BaseModel):
    message: str = "ok"


class CronResponseSchema(BaseModel):
    """Summary of a scheduled scan."""

    message: str = "ok"
    found: int
    scheduled: int
    failed: int


# ===== Health =====

class ComponentStatusSchema(BaseModel):
    """Status of a system component."""

    database: str = "unknown"
    redis: str = "unknown"


class HealthResponseSchema(BaseModel):
    """Health check response schema."""

    status: str
    components: ComponentStatusSchema
    queues: dict[str, dict[str, int]] = Field(default_factory=dict)
