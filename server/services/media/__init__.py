"""Media acquisition and streaming cache.

Resolves source ids to locally cached audio (or relays upstream streams when
no downloader is available) and serves files with byte-range semantics.
"""

from services.media.cache_store import CacheStore
from services.media.coordinator import DownloadCoordinator
from services.media.library import MediaLibrary
from services.media.range_streamer import RangeStreamer
from services.media.resolver import StreamResolver
from services.media.validation import SourceId

__all__ = [
    "CacheStore",
    "DownloadCoordinator",
    "MediaLibrary",
    "RangeStreamer",
    "SourceId",
    "StreamResolver",
]
