"""Queue payloads and the values sources hand back to the pipeline."""

from pydantic import BaseModel, ConfigDict, Field


class PageContent(BaseModel):
    """Fetched content of one item."""

    title: str
    text: str


class UrlPage(PageContent):
    """A page discovered with its content already available."""

    url: str
    source_page_id: str | None = None


class GroupJobData(BaseModel):
    """Payload of a group (discovery) job."""

    model_config = ConfigDict(extra="ignore")

    knowledge_group_id: str
    process_id: str
    cursor: str | None = None


class ItemJobData(BaseModel):
    """Payload of an item (fetch) job."""

    model_config = ConfigDict(extra="ignore")

    knowledge_group_id: str
    process_id: str
    url: str
    source_page_id: str | None = None
    cursor: str | None = None  # Set on the last item of a discovery page
    just_this: bool = False
    text_page: PageContent | None = None


class DiscoveredItem(BaseModel):
    """Reference to an item found during discovery."""

    url: str
    source_page_id: str | None = None
    title: str | None = None


class Discovery(BaseModel):
    """Result of one discovery page."""

    items: list[DiscoveredItem] = Field(default_factory=list)
    pages: list[UrlPage] = Field(default_factory=list)
    next_cursor: str | None = None


class ItemResult(BaseModel):
    """Result of fetching one item."""

    page: PageContent | None = None
    discovered: list[DiscoveredItem] = Field(default_factory=list)
