"""Catalog search through the YouTube Data API.

Two calls per query: ``search`` for matching videos in the music category,
then ``videos`` for durations. Results are mapped to the track record shape
the player UI stores.
"""

import re
from typing import Any, Dict, List, Optional

import httpx

from constants import YOUTUBE_API_BASE, YOUTUBE_MUSIC_CATEGORY
from core.config import Settings
from core.logging import get_logger, log_upstream_call
from services.media.exceptions import UpstreamUnavailableError
from services.media.models import TrackRecord
from services.media.validation import json_object, json_records, require_object

logger = get_logger(__name__)

_ISO_DURATION = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


def parse_iso_duration(value: Optional[str]) -> int:
    """``PT4M13S`` -> 253. Unparseable input is 0."""
    match = _ISO_DURATION.match(value) if isinstance(value, str) else None
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def _video_id(item: Dict[str, Any]) -> Optional[str]:
    video_id = json_object(item.get("id")).get("videoId")
    return video_id if isinstance(video_id, str) and video_id else None


def to_track_record(item: Dict[str, Any], durations: Dict[str, int]) -> Optional[TrackRecord]:
    video_id = _video_id(item)
    if not video_id:
        return None
    snippet = json_object(item.get("snippet"))
    thumbnails = json_object(snippet.get("thumbnails"))
    cover = json_object(thumbnails.get("high") or thumbnails.get("medium")).get("url")
    return TrackRecord(
        id=f"youtube-{video_id}",
        title=snippet.get("title") or "",
        artist=snippet.get("channelTitle") or "",
        duration=durations.get(video_id, 0),
        path=f"youtube://{video_id}",
        cover_art=cover,
        youtube_id=video_id,
    )


class CatalogSearch:
    """Read-only search proxy. Disabled when no API key is configured."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.youtube_api_key
        self.max_results = settings.search_max_results
        self.timeout = settings.resolver_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str, limit: Optional[int] = None) -> List[TrackRecord]:
        """Search music videos matching ``query``.

        Raises:
            UpstreamUnavailableError: no API key, or the API call failed
        """
        if not self.enabled:
            raise UpstreamUnavailableError("Search is not configured")

        limit = min(limit or self.max_results, self.max_results)
        try:
            response = await self.client.get(f"{YOUTUBE_API_BASE}/search", params={
                "part": "snippet",
                "q": f"{query} music",
                "type": "video",
                "videoCategoryId": YOUTUBE_MUSIC_CATEGORY,
                "maxResults": limit,
                "key": self.api_key,
            })
            response.raise_for_status()
            items = json_records(require_object(response.json()).get("items"))
            durations = await self._durations(items)
            records = [r for r in (to_track_record(item, durations) for item in items) if r]
        except (httpx.HTTPError, ValueError) as e:
            # Error strings embed the request URL, which carries the API key
            log_upstream_call(logger, "youtube-data-api", "search", False,
                              error=type(e).__name__)
            raise UpstreamUnavailableError("Search failed")

        log_upstream_call(logger, "youtube-data-api", "search", True, results=len(records))
        return records

    async def _durations(self, items: List[Dict[str, Any]]) -> Dict[str, int]:
        ids = [video_id for video_id in map(_video_id, items) if video_id]
        if not ids:
            return {}

        response = await self.client.get(f"{YOUTUBE_API_BASE}/videos", params={
            "part": "contentDetails",
            "id": ",".join(ids),
            "key": self.api_key,
        })
        response.raise_for_status()
        return {
            video["id"]: parse_iso_duration(json_object(video.get("contentDetails")).get("duration"))
            for video in json_records(require_object(response.json()).get("items"))
            if isinstance(video.get("id"), str)
        }
