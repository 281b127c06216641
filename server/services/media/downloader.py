"""External downloader (yt-dlp) invoked as an async subprocess.

One ``download()`` call is one attempt: a single format selector, optionally
with a browser cookie profile, bounded by its own wall-clock timeout. The
caller owns the fallback sequence and partial-file cleanup.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from core.config import Settings
from core.logging import get_logger
from services.media.exceptions import DownloaderError
from services.media.validation import SourceId

logger = get_logger(__name__)

# Max chars of downloader stderr carried into error messages
_STDERR_TAIL = 150


@dataclass(frozen=True)
class DownloadCandidate:
    """A (format, cookie profile) pair tried by the coordinator."""
    format: str
    container: str
    cookie_browser: Optional[str] = None

    def describe(self) -> str:
        return f"format={self.format}, cookies={self.cookie_browser or 'none'}"


def build_candidates(settings: Settings) -> List[DownloadCandidate]:
    """Formats without cookies first (faster when they work), then every
    cookie browser with every format."""
    formats = settings.format_candidates
    candidates = [DownloadCandidate(fmt, container) for fmt, container in formats]
    for browser in settings.downloader_cookie_browsers:
        for fmt, container in formats:
            candidates.append(DownloadCandidate(fmt, container, browser))
    return candidates


class YtDlpDownloader:
    """Runs the downloader binary for a single attempt."""

    def __init__(self, settings: Settings):
        self.binary = settings.downloader_path
        self.js_runtime = settings.downloader_js_runtime
        self.timeout = settings.download_attempt_timeout

    def build_args(self, source_id: SourceId, candidate: DownloadCandidate,
                   output: Path) -> List[str]:
        args = [
            source_id.watch_url,
            "-f", candidate.format,
            "-o", str(output),
            "--no-playlist",
            "--no-warnings",
            "--no-progress",
        ]
        if self.js_runtime and Path(self.js_runtime).is_file():
            args += ["--js-runtimes", f"deno:{self.js_runtime}"]
        if candidate.cookie_browser:
            args += ["--cookies-from-browser", candidate.cookie_browser]
        return args

    async def download(self, source_id: SourceId, candidate: DownloadCandidate,
                       output: Path, timeout: Optional[float] = None) -> None:
        """Run one attempt writing to ``output``.

        Raises:
            DownloaderError: non-zero exit, process start failure or timeout
        """
        timeout = self.timeout if timeout is None else timeout
        args = self.build_args(source_id, candidate, output)

        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # Missing binary, no permission, exec format error, fd exhaustion
            raise DownloaderError(f"Could not start downloader: {e}")

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise DownloaderError(f"Timed out after {timeout:.0f}s", timed_out=True)
        except OSError as e:
            await self._kill(proc)
            raise DownloaderError(f"Downloader I/O failed: {e}")
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        if proc.returncode != 0:
            message = (stderr or b"").decode("utf-8", "replace").strip()
            raise DownloaderError(
                f"Exit code {proc.returncode}: {message[-_STDERR_TAIL:]}"
            )

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
