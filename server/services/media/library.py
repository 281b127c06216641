"""Local music library: recursive folder scan with tag metadata.

Every scanned file becomes a ``TrackRecord`` whose id and path are the file
token ``/stream/{fileToken}`` accepts, so the player can stream what it
lists. The last scan result is kept in memory for ``/tracks``.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from mutagen import File as MutagenFile
from mutagen import MutagenError

from constants import AUDIO_EXTENSIONS, UNKNOWN_ALBUM, UNKNOWN_ARTIST
from core.config import Settings
from core.logging import get_logger, log_execution_time
from services.media.exceptions import ForbiddenError, NotFoundError
from services.media.local_files import LocalMediaAccess, encode_token
from services.media.models import TrackRecord

logger = get_logger(__name__)


@dataclass
class TrackTags:
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    duration: float = 0.0


def _first(tags: Any, key: str) -> Optional[str]:
    try:
        values = tags.get(key)
    except (KeyError, ValueError):
        return None
    if isinstance(values, list):
        values = values[0] if values else None
    if values is None:
        return None
    return str(values).strip() or None


def read_tags(path: Path) -> TrackTags:
    """Title, artist, album and duration from the file's tags.

    Unreadable or untagged files yield empty tags rather than an error.
    """
    try:
        audio = MutagenFile(path, easy=True)
    except (MutagenError, OSError) as e:
        logger.debug("Tag read failed", path=str(path), error=str(e))
        return TrackTags()
    if audio is None:
        return TrackTags()

    tags = audio.tags or {}
    info = getattr(audio, "info", None)
    return TrackTags(
        title=_first(tags, "title"),
        artist=_first(tags, "artist"),
        album=_first(tags, "album"),
        duration=float(getattr(info, "length", 0) or 0),
    )


class MediaLibrary:
    """Scans allowed folders and remembers the last result."""

    def __init__(self, settings: Settings, local_media: LocalMediaAccess):
        self.local_media = local_media
        self.max_files = settings.library_scan_max_files
        self.folder: Optional[Path] = None
        self._tracks: List[TrackRecord] = []

    def tracks(self) -> List[TrackRecord]:
        return list(self._tracks)

    def scan(self, folder: str) -> List[TrackRecord]:
        """Scan ``folder`` recursively and replace the library with the result.

        Blocking; callers on the event loop run it in a worker thread.

        Raises:
            ForbiddenError: folder outside the allowed directories
            NotFoundError: folder missing
        """
        root = self.local_media.check_dir(folder)
        start = time.time()

        records = [self._to_record(path) for path in self._audio_files(root)]

        self.folder = root
        self._tracks = records
        log_execution_time(logger, "library_scan", start, time.time(),
                           folder=str(root), tracks=len(records))
        return self.tracks()

    def _audio_files(self, root: Path) -> List[Path]:
        found: List[Path] = []

        def on_error(e: OSError) -> None:
            logger.warning("Library scan skipped directory", path=e.filename, error=e.strerror)

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=False):
            dirnames.sort()
            for name in sorted(filenames):
                if Path(name).suffix.lower() not in AUDIO_EXTENSIONS:
                    continue
                path = Path(dirpath) / name
                try:
                    # Same checks /stream applies, so every listed track streams
                    self.local_media.check_path(str(path))
                except (ForbiddenError, NotFoundError):
                    continue
                found.append(path)
                if len(found) >= self.max_files:
                    logger.warning("Library scan file limit reached",
                                   folder=str(root), max_files=self.max_files)
                    return found
        return found

    def _to_record(self, path: Path) -> TrackRecord:
        tags = read_tags(path)
        token = encode_token(str(path))
        return TrackRecord(
            id=token,
            title=tags.title or path.stem,
            artist=tags.artist or UNKNOWN_ARTIST,
            album=tags.album or UNKNOWN_ALBUM,
            duration=round(tags.duration),
            path=token,
            source="local",
        )
