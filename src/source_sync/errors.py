"""Error taxonomy for the sync pipeline."""


class SyncError(Exception):
    """Base class for all sync pipeline errors."""


class UnrecoverableError(SyncError):
    """A job failure that must not be retried by the queue."""


class ConfigurationError(UnrecoverableError):
    """Unknown source type, malformed source URL or missing credentials."""


class FetchError(SyncError):
    """Transient failure talking to an external source."""


class ContentError(UnrecoverableError):
    """The source answered but the item has no usable content."""


class UpsertError(SyncError):
    """The content reconciler failed to store a fetched page."""


class ChunkSizeError(SyncError):
    """Markdown could not be split within the configured chunk size."""


class NotFoundError(SyncError):
    """A knowledge group or scrape item does not exist."""


class InvalidRequestError(SyncError):
    """A sync was requested for something that cannot be synced."""
