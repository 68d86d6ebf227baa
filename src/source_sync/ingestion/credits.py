"""Credit check collaborator consulted before each unit of work."""

from typing import Protocol

import httpx

from source_sync.config import get_settings
from source_sync.errors import FetchError


class CreditChecker(Protocol):
    async def has_credits(self, user_id: str) -> bool: ...


class UnlimitedCredits:
    """Credit checker used when no billing service is configured."""

    async def has_credits(self, user_id: str) -> bool:
        return True


class HttpCreditChecker:
    """
    Ask the billing service whether a user may spend credits.

    Expects ``GET {url}?user_id=...`` to return ``{"has_credits": bool}``.
    Transport errors propagate so the job is retried.
    """

    def __init__(self, url: str, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.transport = transport

    async def has_credits(self, user_id: str) -> bool:
        async with httpx.AsyncClient(
            timeout=get_settings().http_timeout_seconds, transport=self.transport
        ) as client:
            try:
                response = await client.get(self.url, params={"user_id": user_id})
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise FetchError(f"Credit check failed: {e}") from e
        return bool(response.json().get("has_credits", False))


def get_credit_checker() -> CreditChecker:
    settings = get_settings()
    if settings.credits_url:
        return HttpCreditChecker(settings.credits_url)
    return UnlimitedCredits()
