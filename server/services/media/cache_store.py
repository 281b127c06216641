"""On-disk cache of downloaded audio keyed by source id.

Files live flat in the cache directory as ``<source_id>.<container>``.
In-progress downloads use a ``.download`` suffix and are renamed into place
only after they completed, so a lookup never sees a partial file.

Eviction is two-phase:
1. Any file older than the age budget is removed, regardless of size pressure.
2. If the remaining total still exceeds the size budget, files are removed
   oldest-mtime first until under budget.

The directory is shared with concurrent downloads, so every stat/delete
tolerates files vanishing between listing and use.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from constants import CACHE_CONTAINERS, DOWNLOAD_TEMP_SUFFIX
from core.config import Settings
from core.logging import get_logger, log_cache_operation
from services.media.models import CacheEntry, CacheInfo, ClearReport, EvictionReport
from services.media.validation import SourceId

logger = get_logger(__name__)


@dataclass
class _CachedFile:
    path: Path
    size: int
    mtime: float

    @property
    def source_id(self) -> str:
        return self.path.name.split(".", 1)[0]


class CacheStore:
    """Answers "is this id cached?" and enforces size/age budgets."""

    def __init__(self, settings: Settings):
        self.directory = Path(settings.cache_dir)
        self.max_bytes = settings.max_cache_bytes
        self.max_age_seconds = settings.max_cache_age_seconds
        self.max_age_days = settings.max_cache_age_days
        self.directory.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def path_for(self, source_id: SourceId, container: str) -> Path:
        return self.directory / f"{source_id.value}.{container}"

    def lookup(self, source_id: SourceId) -> Optional[CacheEntry]:
        """Return the cached entry for ``source_id`` and refresh its access time.

        Containers are checked in priority order. Zero-byte files are never a
        valid hit and are removed on sight.
        """
        source_id = SourceId.parse(source_id)

        for container in CACHE_CONTAINERS:
            path = self.path_for(source_id, container)
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cache stat failed", path=str(path), error=str(e))
                continue

            if stat.st_size == 0:
                logger.warning("Removing empty cache file", path=str(path))
                self._unlink(path)
                continue

            now = time.time()
            try:
                os.utime(path, (now, now))
            except FileNotFoundError:
                # Evicted between stat and touch
                continue
            except OSError as e:
                logger.warning("Cache touch failed", path=str(path), error=str(e))

            log_cache_operation(logger, "lookup", source_id.value, hit=True, container=container)
            return CacheEntry(
                source_id=source_id.value,
                file_path=path,
                container=container,
                size_bytes=stat.st_size,
                created_at=getattr(stat, "st_birthtime", stat.st_ctime),
                last_accessed_at=now,
            )

        log_cache_operation(logger, "lookup", source_id.value, hit=False)
        return None

    # =========================================================================
    # DOWNLOAD LIFECYCLE
    # =========================================================================

    def temp_path(self, source_id: SourceId, container: str) -> Path:
        return self.directory / f"{source_id.value}.{container}{DOWNLOAD_TEMP_SUFFIX}"

    def commit(self, source_id: SourceId, container: str) -> Optional[CacheEntry]:
        """Move a finished download into place.

        Returns None (and removes the temp file) when the download is empty.
        """
        temp = self.temp_path(source_id, container)
        try:
            size = temp.stat().st_size
        except FileNotFoundError:
            return None

        if size == 0:
            self._unlink(temp)
            return None

        final = self.path_for(source_id, container)
        os.replace(temp, final)
        log_cache_operation(logger, "commit", source_id.value, container=container, size=size)
        return self.lookup(source_id)

    def discard(self, source_id: SourceId, container: str) -> None:
        """Remove partial output of a failed attempt."""
        temp = self.temp_path(source_id, container)
        # yt-dlp writes to "<output>.part" before renaming to <output>
        for path in (temp, temp.with_name(temp.name + ".part"), temp.with_name(temp.name + ".ytdl")):
            self._unlink(path)

    # =========================================================================
    # EVICTION
    # =========================================================================

    def evict(self, now: Optional[float] = None,
              protected: Iterable[str] = ()) -> EvictionReport:
        """Enforce the age budget, then the size budget.

        Files belonging to ids in ``protected`` (downloads in flight) are
        neither deleted nor counted as candidates.
        """
        now = time.time() if now is None else now
        protected = set(protected)
        report = EvictionReport()

        files = self._scan(report)
        total = sum(f.size for f in files)

        # Phase 1: age
        survivors: List[_CachedFile] = []
        for f in files:
            if f.source_id not in protected and now - f.mtime > self.max_age_seconds:
                if self._unlink(f.path):
                    report.removed_by_age += 1
                    report.freed_bytes += f.size
                    total -= f.size
                    continue
                report.errors += 1
            survivors.append(f)

        # Phase 2: size, least recently touched first
        if total > self.max_bytes:
            remaining: List[_CachedFile] = []
            for f in sorted(survivors, key=lambda x: x.mtime):
                if total > self.max_bytes and f.source_id not in protected:
                    if self._unlink(f.path):
                        report.removed_by_size += 1
                        report.freed_bytes += f.size
                        total -= f.size
                        continue
                    report.errors += 1
                remaining.append(f)
            survivors = remaining

        report.remaining_files = len(survivors)
        report.remaining_bytes = total

        if report.removed:
            logger.info("Cache eviction completed",
                       removed_by_age=report.removed_by_age,
                       removed_by_size=report.removed_by_size,
                       freed_mb=round(report.freed_bytes / (1024 * 1024), 2),
                       remaining_mb=round(total / (1024 * 1024), 2))
        return report

    def clear(self, protected: Iterable[str] = ()) -> ClearReport:
        """Delete every cache file except those of in-flight downloads."""
        protected = set(protected)
        report = ClearReport()
        for f in self._scan():
            if f.source_id in protected:
                if f.source_id not in report.skipped:
                    report.skipped.append(f.source_id)
                continue
            if self._unlink(f.path):
                report.removed_files += 1
                report.freed_bytes += f.size

        logger.info("Cache cleared",
                   removed_files=report.removed_files,
                   freed_bytes=report.freed_bytes,
                   skipped=len(report.skipped))
        return report

    def info(self, in_flight: Iterable[str] = ()) -> CacheInfo:
        entries = []
        total = 0
        for f in self._scan():
            total += f.size
            name, _, container = f.path.name.partition(".")
            if container not in CACHE_CONTAINERS:
                continue
            entries.append(CacheEntry(
                source_id=name,
                file_path=f.path,
                container=container,
                size_bytes=f.size,
                created_at=f.mtime,
                last_accessed_at=f.mtime,
            ))

        entries.sort(key=lambda e: e.last_accessed_at, reverse=True)
        return CacheInfo(
            directory=str(self.directory),
            file_count=len(entries),
            total_bytes=total,
            max_bytes=self.max_bytes,
            max_age_days=self.max_age_days,
            in_flight=sorted(in_flight),
            entries=entries,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _scan(self, report: Optional[EvictionReport] = None) -> List[_CachedFile]:
        """List regular files in the cache directory with their size and mtime."""
        files: List[_CachedFile] = []
        try:
            iterator = list(os.scandir(self.directory))
        except FileNotFoundError:
            self.directory.mkdir(parents=True, exist_ok=True)
            return files

        for item in iterator:
            try:
                if not item.is_file(follow_symlinks=False):
                    continue
                stat = item.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cache stat failed", path=item.path, error=str(e))
                if report is not None:
                    report.errors += 1
                continue
            files.append(_CachedFile(path=Path(item.path), size=stat.st_size, mtime=stat.st_mtime))
        return files

    def _unlink(self, path: Path) -> bool:
        """Delete a file, treating "already gone" as success."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("Cache delete failed", path=str(path), error=str(e))
            return False
