"""Serve a local file with HTTP byte-range semantics.

Knows nothing about where the file came from. One range per request; the
full satisfiable range is streamed in fixed-size chunks read off the event
loop.
"""

import asyncio
import os
import re
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

from fastapi.responses import Response, StreamingResponse

from constants import DEFAULT_MIME_TYPE, MIME_TYPES, STREAM_CHUNK_SIZE
from core.logging import get_logger
from services.media.exceptions import NotFoundError, RangeNotSatisfiableError

logger = get_logger(__name__)

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: str, size: int) -> Tuple[int, int]:
    """Parse a single ``bytes=start-end`` range against a file of ``size`` bytes.

    An empty start means 0 and an empty end means the last byte.

    Returns:
        Inclusive ``(start, end)``

    Raises:
        RangeNotSatisfiableError: malformed header, other units, multiple
            ranges, ``start > end`` or ``end >= size``
    """
    match = _RANGE_PATTERN.match(header.strip())
    if not match:
        raise RangeNotSatisfiableError(size)

    raw_start, raw_end = match.groups()
    start = int(raw_start) if raw_start else 0
    end = int(raw_end) if raw_end else size - 1

    if start > end or end >= size:
        raise RangeNotSatisfiableError(size)
    return start, end


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), DEFAULT_MIME_TYPE)


class RangeStreamer:
    """Builds 200/206 responses for files on disk."""

    def __init__(self, chunk_size: int = STREAM_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def stream(self, path: Path, range_header: Optional[str] = None,
               head: bool = False, media_type: Optional[str] = None) -> Response:
        """Response for ``path`` honoring ``range_header``.

        Raises:
            NotFoundError: file missing
            RangeNotSatisfiableError: invalid range (416 with ``bytes */size``)
        """
        path = Path(path)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            raise NotFoundError("File not found")

        headers = {
            "Accept-Ranges": "bytes",
            "Content-Type": media_type or mime_type_for(path),
        }

        if range_header:
            start, end = parse_range(range_header, size)
            status_code = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"
        else:
            start, end = 0, size - 1
            status_code = 200

        length = end - start + 1
        headers["Content-Length"] = str(length)

        if head:
            return Response(status_code=status_code, headers=headers)

        return StreamingResponse(
            self._iter_file(path, start, length),
            status_code=status_code,
            headers=headers,
        )

    async def _iter_file(self, path: Path, start: int, length: int) -> AsyncIterator[bytes]:
        """Yield ``length`` bytes from ``start``. Closing the generator on
        client disconnect closes the file."""
        if length <= 0:
            return

        try:
            handle = await asyncio.to_thread(open, path, "rb")
        except FileNotFoundError:
            # Evicted after the headers were built; the stream just ends
            logger.warning("File vanished before streaming", path=str(path))
            return

        remaining = length
        try:
            if start:
                await asyncio.to_thread(handle.seek, start, os.SEEK_SET)
            while remaining > 0:
                chunk = await asyncio.to_thread(handle.read, min(self.chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
        finally:
            handle.close()
            if remaining:
                logger.debug("Stream ended early", path=str(path), unsent=remaining)
