"""Shared route dependencies."""

import secrets

from fastapi import Header, HTTPException, Request

from source_sync.config import get_settings
from source_sync.ingestion import SyncPipeline, SyncScheduler


def get_pipeline(request: Request) -> SyncPipeline:
    return request.app.state.pipeline


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def _matches(given: str | None, expected: str) -> bool:
    return given is not None and secrets.compare_digest(given, expected)


async def require_api_token(authorization: str | None = Header(default=None)) -> None:
    """Require ``Authorization: Bearer <api_token>`` when a token is configured."""
    token = get_settings().api_token
    if not token:
        return
    scheme, _, value = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not _matches(value, token):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    """Require the ``x-cron-secret`` header when a cron secret is configured."""
    secret = get_settings().cron_secret
    if secret and not _matches(x_cron_secret, secret):
        raise HTTPException(status_code=401, detail="Unauthorized")
