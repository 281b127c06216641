"""File tokens for ``/stream/{fileToken}`` and local path safety checks.

A token is URL-safe base64 of either an absolute local path or
``youtube:<sourceId>`` (the cached download for that id). Local paths must
pass every check before they are opened:

- no null bytes, absolute, no ``..`` segments
- audio file extension
- inside one of the allowed media directories (after resolving links)
- not a symlink, and a regular file

Scanned folders get the same treatment through ``check_dir``.
"""

import base64
import binascii
import os
import stat
from pathlib import Path
from typing import List

from constants import AUDIO_EXTENSIONS, CACHED_TOKEN_PREFIX
from core.config import Settings
from core.logging import get_logger
from services.media.cache_store import CacheStore
from services.media.exceptions import ForbiddenError, InvalidTokenError, NotFoundError
from services.media.validation import SourceId

logger = get_logger(__name__)


def encode_token(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def decode_token(token: str) -> str:
    """Decode a file token, tolerating stripped padding.

    Raises:
        InvalidTokenError: not base64 or not UTF-8
    """
    if not token:
        raise InvalidTokenError()
    padded = token + "=" * (-len(token) % 4)
    try:
        value = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidTokenError()
    if not value:
        raise InvalidTokenError()
    return value


class LocalMediaAccess:
    """Maps file tokens to files that are safe to stream."""

    def __init__(self, settings: Settings, cache_store: CacheStore):
        self.cache = cache_store
        roots = [Path(d).expanduser() for d in settings.allowed_media_dirs]
        roots.append(cache_store.directory)
        self.allowed_roots: List[Path] = [root.resolve() for root in roots]

    def resolve(self, token: str) -> Path:
        """Path of the file a token refers to.

        Raises:
            InvalidTokenError: malformed token (400)
            InvalidIdError: ``youtube:`` token with a malformed id (400)
            ForbiddenError: path fails a safety check (403)
            NotFoundError: file or cache entry missing (404)
        """
        value = decode_token(token)

        if value.startswith(CACHED_TOKEN_PREFIX):
            source_id = SourceId.parse(value[len(CACHED_TOKEN_PREFIX):])
            entry = self.cache.lookup(source_id)
            if entry is None:
                raise NotFoundError("Not cached")
            return entry.file_path

        return self.check_path(value)

    def is_allowed(self, path: Path) -> bool:
        return any(path == root or path.is_relative_to(root) for root in self.allowed_roots)

    def check_path(self, raw: str) -> Path:
        if "\x00" in raw:
            raise ForbiddenError("Invalid path")

        path = Path(raw)
        if not path.is_absolute() or ".." in path.parts:
            raise ForbiddenError("Invalid path")

        if path.suffix.lower() not in AUDIO_EXTENSIONS:
            raise ForbiddenError("Not an audio file")

        if not self.is_allowed(path.resolve()):
            logger.warning("Rejected path outside allowed directories", path=raw)
            raise ForbiddenError("Path not allowed")

        try:
            info = os.lstat(path)
        except FileNotFoundError:
            raise NotFoundError("File not found")
        except OSError as e:
            logger.warning("Local file stat failed", path=raw, error=str(e))
            raise ForbiddenError("Path not accessible")

        if stat.S_ISLNK(info.st_mode):
            logger.warning("Rejected symlink", path=raw)
            raise ForbiddenError("Symlinks are not allowed")
        if not stat.S_ISREG(info.st_mode):
            raise ForbiddenError("Not a regular file")

        return path

    def check_dir(self, raw: str) -> Path:
        """Resolved directory for a library scan.

        Raises:
            ForbiddenError: relative, traversing or outside the allowed directories
            NotFoundError: missing or not a directory
        """
        if "\x00" in raw:
            raise ForbiddenError("Invalid path")

        path = Path(raw).expanduser()
        if not path.is_absolute() or ".." in path.parts:
            raise ForbiddenError("Invalid path")

        resolved = path.resolve()
        if not self.is_allowed(resolved):
            logger.warning("Rejected scan outside allowed directories", path=raw)
            raise ForbiddenError("Path not allowed")
        if not resolved.is_dir():
            raise NotFoundError("Folder not found")
        return resolved
