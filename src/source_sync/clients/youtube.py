"""YouTube channel listing and transcript fetching."""

import asyncio
import re
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

import httpx
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from source_sync.clients.base import ApiClient
from source_sync.config import get_settings
from source_sync.errors import ConfigurationError, ContentError

DATA_API = "https://www.googleapis.com/youtube/v3"
OEMBED_URL = "https://www.youtube.com/oembed"

VIDEO_PATH_RE = re.compile(r"^/(?:shorts|embed|live|v)/([\w-]{11})")

TranscriptFetcher = Callable[[str], str]


def extract_video_id(url: str) -> str:
    """Video id of a watch, short link, shorts or embed URL."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").removeprefix("www.").removeprefix("m.")
    if host == "youtu.be":
        video_id = parsed.path.lstrip("/").split("/")[0]
        if video_id:
            return video_id
    if host.endswith("youtube.com"):
        if parsed.path == "/watch":
            video_id = parse_qs(parsed.query).get("v", [""])[0]
            if video_id:
                return video_id
        match = VIDEO_PATH_RE.match(parsed.path)
        if match:
            return match.group(1)
    raise ContentError(f"Not a YouTube video URL: {url}")


def fetch_transcript_text(video_id: str) -> str:
    """Blocking transcript fetch joined into plain text."""
    transcript = YouTubeTranscriptApi().fetch(video_id)
    return " ".join(snippet.text.strip() for snippet in transcript if snippet.text.strip())


class YouTubeClient(ApiClient):
    """Lists channel uploads with the Data API and reads transcripts."""

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        transcript_fetcher: TranscriptFetcher | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.api_key = api_key or get_settings().youtube_api_key
        self.transcript_fetcher = transcript_fetcher or fetch_transcript_text

    async def list_channel_videos(
        self, channel_url: str, page_token: str | None = None
    ) -> tuple[list[dict[str, str]], str | None]:
        """One page of a channel's uploads as ``{id, url, title}`` dicts."""
        playlist_id = await self._uploads_playlist(channel_url)
        params: dict[str, Any] = {
            "part": "snippet",
            "playlistId": playlist_id,
            "maxResults": 50,
            "key": self._require_key(),
        }
        if page_token:
            params["pageToken"] = page_token
        payload = await self.get_json(f"{DATA_API}/playlistItems", params=params)

        videos = []
        for item in payload.get("items") or []:
            snippet = item.get("snippet") or {}
            video_id = (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                continue
            videos.append(
                {
                    "id": video_id,
                    "url": f"https://www.youtube.com/watch?v={video_id}",
                    "title": snippet.get("title") or "",
                }
            )
        return videos, payload.get("nextPageToken")

    async def get_video(self, url: str) -> tuple[str, str]:
        """Title and transcript text of a video."""
        video_id = extract_video_id(url)
        title = await self._video_title(url) or video_id

        try:
            transcript = await asyncio.to_thread(self.transcript_fetcher, video_id)
        except CouldNotRetrieveTranscript as e:
            raise ContentError(f"No transcript available for this video: {e}") from e

        if not transcript or not transcript.strip():
            raise ContentError("No transcript available for this video")
        return title, transcript

    async def _video_title(self, url: str) -> str | None:
        payload = await self.get_json(OEMBED_URL, params={"url": url, "format": "json"})
        return payload.get("title")

    async def _uploads_playlist(self, channel_url: str) -> str:
        params: dict[str, Any] = {"part": "contentDetails", "key": self._require_key()}
        path = urlparse(channel_url).path.strip("/")
        if path.startswith("channel/"):
            params["id"] = path.split("/")[1]
        elif path.startswith("@"):
            params["forHandle"] = path.split("/")[0]
        elif path.startswith(("user/", "c/")):
            params["forUsername"] = path.split("/")[1]
        else:
            raise ConfigurationError(f"Unsupported YouTube channel URL: {channel_url}")

        payload = await self.get_json(f"{DATA_API}/channels", params=params)
        items = payload.get("items") or []
        if not items:
            raise ConfigurationError(f"YouTube channel not found: {channel_url}")
        return items[0]["contentDetails"]["relatedPlaylists"]["uploads"]

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("A YouTube API key is required to list channel videos")
        return self.api_key
