"""Centralized constants for media handling.

Single source of truth for audio extensions, MIME types, id format and
upstream defaults shared by the cache, streamer and resolver.
"""

import re
from typing import Dict, FrozenSet, Tuple

# =============================================================================
# AUDIO FILES
# =============================================================================

AUDIO_EXTENSIONS: FrozenSet[str] = frozenset([
    '.mp3',
    '.wav',
    '.flac',
    '.ogg',
    '.m4a',
    '.aac',
    '.webm',
])

MIME_TYPES: Dict[str, str] = {
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.flac': 'audio/flac',
    '.ogg': 'audio/ogg',
    '.m4a': 'audio/mp4',
    '.aac': 'audio/aac',
    '.webm': 'audio/webm',
}

DEFAULT_MIME_TYPE = 'audio/mpeg'

# Read size for file streaming
STREAM_CHUNK_SIZE = 64 * 1024

# =============================================================================
# SOURCE IDS / CACHE
# =============================================================================

# YouTube video id: 11 chars of alphanumeric, dash, underscore
VIDEO_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')

# Cache containers in lookup priority order
CACHE_CONTAINERS: Tuple[str, ...] = ('m4a', 'webm')

# Suffix of in-progress downloads (renamed into place on success)
DOWNLOAD_TEMP_SUFFIX = '.download'

YOUTUBE_WATCH_URL = 'https://www.youtube.com/watch?v={source_id}'

# Prefix of file tokens that point at a cached download instead of a path
CACHED_TOKEN_PREFIX = 'youtube:'

# Tag fallbacks for scanned local files
UNKNOWN_ARTIST = 'Unknown Artist'
UNKNOWN_ALBUM = 'Unknown Album'

# =============================================================================
# UPSTREAM
# =============================================================================

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
    'AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/121.0.0.0 Safari/537.36'
)

DEFAULT_RESOLVER_INSTANCES: Tuple[str, ...] = (
    'piped:https://pipedapi.kavin.rocks',
    'piped:https://pipedapi.adminforge.de',
    'piped:https://api.piped.yt',
    'piped:https://pipedapi.in.projectsegfau.lt',
    'invidious:https://inv.nadeko.net',
    'invidious:https://yewtu.be',
    'invidious:https://invidious.nerdvpn.de',
)

YOUTUBE_API_BASE = 'https://www.googleapis.com/youtube/v3'

# Music category on the YouTube Data API
YOUTUBE_MUSIC_CATEGORY = '10'

# =============================================================================
# SECURITY
# =============================================================================

AUTH_HEADER = 'X-Auth-Token'

CORS_EXPOSED_HEADERS: Tuple[str, ...] = (
    'Content-Range',
    'Accept-Ranges',
    'Content-Length',
    'Retry-After',
)

CORS_ALLOWED_HEADERS: Tuple[str, ...] = (
    'Content-Type',
    'Range',
    'Authorization',
    AUTH_HEADER,
)

CORS_ALLOWED_METHODS: Tuple[str, ...] = ('GET', 'HEAD', 'POST', 'OPTIONS')

# Seconds browsers may cache a preflight answer
CORS_PREFLIGHT_MAX_AGE = 600
