"""Resolve a source id to a cached file, downloading at most once per id.

Two layers keep concurrent callers from downloading the same id twice:

- An in-flight task map. The first caller for an id starts the download
  task; every later caller awaits the same task through ``asyncio.shield``,
  so a client that disconnects never cancels a download others depend on.
- A keyed lock around the download itself, with a re-check of the cache once
  the lock is held. This is the critical section for the id and survives
  even if the task map is bypassed (for example after a forced takeover).
"""

import asyncio
from typing import Dict, List, Optional, Union

from core.config import Settings
from core.logging import get_logger
from services.media.cache_store import CacheStore
from services.media.downloader import DownloadCandidate, YtDlpDownloader, build_candidates
from services.media.exceptions import DownloadFailedError, DownloaderError
from services.media.locks import KeyedLockRegistry
from services.media.models import CacheEntry
from services.media.validation import SourceId

logger = get_logger(__name__)


class DownloadCoordinator:
    """Single entry point for "give me a playable file for this id"."""

    def __init__(self, cache_store: CacheStore, locks: KeyedLockRegistry,
                 downloader: YtDlpDownloader, settings: Settings):
        self.cache = cache_store
        self.locks = locks
        self.downloader = downloader
        self.candidates: List[DownloadCandidate] = build_candidates(settings)
        self.attempt_timeout = settings.download_attempt_timeout
        self.total_timeout = settings.download_total_timeout
        self._in_flight: Dict[str, asyncio.Task] = {}

    def in_flight(self) -> List[str]:
        """Ids with a download currently running."""
        return list(self._in_flight)

    async def acquire(self, source_id: Union[str, SourceId]) -> CacheEntry:
        """Return the cache entry for ``source_id``, downloading it if needed.

        Raises:
            InvalidIdError: malformed id, before any filesystem access
            DownloadFailedError: every download candidate failed
        """
        source_id = SourceId.parse(source_id)

        entry = self.cache.lookup(source_id)
        if entry is not None:
            return entry

        key = source_id.value
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._download(source_id), name=f"download:{key}")
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
            logger.info("Download started", source_id=key)
        else:
            logger.debug("Joining in-flight download", source_id=key)

        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the exception retrieved when every waiter went away
        if not task.cancelled():
            task.exception()

    async def _download(self, source_id: SourceId) -> CacheEntry:
        async with self.locks.hold(source_id.value):
            # Another holder may have finished while we waited
            entry = self.cache.lookup(source_id)
            if entry is not None:
                return entry
            return await self._run_candidates(source_id)

    async def _run_candidates(self, source_id: SourceId) -> CacheEntry:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.total_timeout
        last_error: Optional[str] = None

        for attempt, candidate in enumerate(self.candidates, start=1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error("Download deadline exhausted",
                             source_id=source_id.value, attempts=attempt - 1)
                break

            container = candidate.container
            self.cache.discard(source_id, container)
            output = self.cache.temp_path(source_id, container)

            try:
                await self.downloader.download(
                    source_id, candidate, output,
                    timeout=min(self.attempt_timeout, remaining),
                )
            except (DownloaderError, OSError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning("Download attempt failed",
                               source_id=source_id.value, attempt=attempt,
                               candidate=candidate.describe(),
                               timed_out=getattr(e, "timed_out", False), error=last_error)
                self.cache.discard(source_id, container)
                continue
            except BaseException:
                self.cache.discard(source_id, container)
                raise

            try:
                entry = self.cache.commit(source_id, container)
            except OSError as e:
                last_error = str(e)
                logger.warning("Download commit failed",
                               source_id=source_id.value, attempt=attempt, error=last_error)
                self.cache.discard(source_id, container)
                continue

            if entry is None:
                last_error = "downloader produced no output"
                logger.warning("Download produced empty file",
                               source_id=source_id.value, attempt=attempt,
                               candidate=candidate.describe())
                continue

            logger.info("Download completed",
                        source_id=source_id.value, attempt=attempt,
                        candidate=candidate.describe(),
                        size_mb=round(entry.size_bytes / (1024 * 1024), 2))
            return entry

        logger.error("All download attempts failed",
                     source_id=source_id.value, last_error=last_error)
        raise DownloadFailedError()
