"""Upstream resolution providers.

Each provider knows the URL of its streams endpoint and how to turn the JSON
document it returns into audio variants and track metadata. Network access
stays in ``StreamResolver``; providers only build URLs and parse payloads.
"""

from typing import Any, Dict, List, Optional

from services.media.models import AudioStream, TrackInfo
from services.media.validation import SourceId, json_records


def _to_int(value: Any) -> int:
    """Bitrates and durations arrive as ints or numeric strings."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class ResolutionProvider:
    """Base class for an upstream resolution service instance."""

    kind = ""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return f"{self.kind}:{self.base_url}"

    def streams_url(self, source_id: SourceId) -> str:
        raise NotImplementedError

    def parse_streams(self, data: Dict[str, Any]) -> List[AudioStream]:
        raise NotImplementedError

    def parse_info(self, source_id: SourceId, data: Dict[str, Any]) -> TrackInfo:
        raise NotImplementedError


class PipedProvider(ResolutionProvider):
    """Piped API: ``GET /streams/{id}`` with an ``audioStreams`` list."""

    kind = "piped"

    def streams_url(self, source_id: SourceId) -> str:
        return f"{self.base_url}/streams/{source_id.value}"

    def parse_streams(self, data: Dict[str, Any]) -> List[AudioStream]:
        streams = []
        for item in json_records(data.get("audioStreams")):
            if not item.get("url"):
                continue
            streams.append(AudioStream(
                url=item["url"],
                mime_type=item.get("mimeType") or "",
                bitrate=_to_int(item.get("bitrate")),
                quality=item.get("quality"),
            ))
        return streams

    def parse_info(self, source_id: SourceId, data: Dict[str, Any]) -> TrackInfo:
        return TrackInfo(
            source_id=source_id.value,
            title=data.get("title") or "",
            uploader=data.get("uploader") or "",
            duration=_to_int(data.get("duration")),
            thumbnail=data.get("thumbnailUrl"),
        )


class InvidiousProvider(ResolutionProvider):
    """Invidious API: ``GET /api/v1/videos/{id}`` with ``adaptiveFormats``."""

    kind = "invidious"

    def streams_url(self, source_id: SourceId) -> str:
        return f"{self.base_url}/api/v1/videos/{source_id.value}"

    def parse_streams(self, data: Dict[str, Any]) -> List[AudioStream]:
        streams = []
        for item in json_records(data.get("adaptiveFormats")):
            mime_type = str(item.get("type") or "")
            if not mime_type.startswith("audio/") or not item.get("url"):
                continue
            streams.append(AudioStream(
                url=item["url"],
                mime_type=mime_type,
                bitrate=_to_int(item.get("bitrate")),
                quality=item.get("audioQuality"),
            ))
        return streams

    def parse_info(self, source_id: SourceId, data: Dict[str, Any]) -> TrackInfo:
        thumbnails = json_records(data.get("videoThumbnails"))
        thumbnail: Optional[str] = thumbnails[0].get("url") if thumbnails else None
        return TrackInfo(
            source_id=source_id.value,
            title=data.get("title") or "",
            uploader=data.get("author") or "",
            duration=_to_int(data.get("lengthSeconds")),
            thumbnail=thumbnail,
        )


PROVIDERS = {
    PipedProvider.kind: PipedProvider,
    InvidiousProvider.kind: InvidiousProvider,
}


def build_provider(kind: str, base_url: str) -> ResolutionProvider:
    """Instantiate the provider registered for ``kind``."""
    try:
        return PROVIDERS[kind](base_url)
    except KeyError:
        raise ValueError(f"Unknown resolver kind: {kind}")
