"""Tests for the downloader subprocess wrapper using stand-in scripts."""

import stat
import sys
from pathlib import Path

import pytest

from core.config import Settings
from services.media.downloader import DownloadCandidate, YtDlpDownloader
from services.media.exceptions import DownloaderError
from services.media.validation import SourceId

from conftest import VALID_ID

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell scripts")


def make_script(directory: Path, body: str) -> Path:
    path = directory / "fake-yt-dlp"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


def make_downloader(settings: Settings, script: Path, timeout: float = 5) -> YtDlpDownloader:
    return YtDlpDownloader(settings.model_copy(update={
        "downloader_path": str(script),
        "download_attempt_timeout": timeout,
    }))


class TestYtDlpDownloader:
    """Test argument building, success, failure and timeout handling."""

    def test_build_args(self, settings: Settings, tmp_path: Path) -> None:
        downloader = YtDlpDownloader(settings)
        candidate = DownloadCandidate("140", "m4a", cookie_browser="firefox")

        args = downloader.build_args(SourceId(VALID_ID), candidate, tmp_path / "out")

        assert args[:5] == [
            f"https://www.youtube.com/watch?v={VALID_ID}", "-f", "140", "-o", str(tmp_path / "out"),
        ]
        assert "--no-playlist" in args
        assert args[-2:] == ["--cookies-from-browser", "firefox"]
        assert "--js-runtimes" not in args

    def test_js_runtime_added_when_present(self, settings: Settings, tmp_path: Path) -> None:
        runtime = tmp_path / "deno"
        runtime.write_text("")
        downloader = YtDlpDownloader(settings.model_copy(update={"downloader_js_runtime": str(runtime)}))

        args = downloader.build_args(SourceId(VALID_ID), DownloadCandidate("140", "m4a"), tmp_path / "out")

        assert f"deno:{runtime}" in args

    async def test_successful_attempt_writes_output(self, settings: Settings, tmp_path: Path) -> None:
        # $5 is the -o value
        script = make_script(tmp_path, 'printf "audio" > "$5"\n')
        output = tmp_path / "out.m4a.download"

        await make_downloader(settings, script).download(
            SourceId(VALID_ID), DownloadCandidate("140", "m4a"), output
        )

        assert output.read_bytes() == b"audio"

    async def test_nonzero_exit_raises_with_stderr(self, settings: Settings, tmp_path: Path) -> None:
        script = make_script(tmp_path, 'echo "ERROR: Sign in to confirm" >&2\nexit 1\n')

        with pytest.raises(DownloaderError) as exc_info:
            await make_downloader(settings, script).download(
                SourceId(VALID_ID), DownloadCandidate("140", "m4a"), tmp_path / "out"
            )

        assert "Sign in to confirm" in str(exc_info.value)
        assert not exc_info.value.timed_out

    async def test_attempt_timeout_kills_process(self, settings: Settings, tmp_path: Path) -> None:
        script = make_script(tmp_path, "exec sleep 10\n")

        with pytest.raises(DownloaderError) as exc_info:
            await make_downloader(settings, script, timeout=0.2).download(
                SourceId(VALID_ID), DownloadCandidate("140", "m4a"), tmp_path / "out"
            )

        assert exc_info.value.timed_out

    async def test_missing_binary(self, settings: Settings, tmp_path: Path) -> None:
        downloader = YtDlpDownloader(settings.model_copy(update={"downloader_path": str(tmp_path / "missing")}))

        with pytest.raises(DownloaderError):
            await downloader.download(SourceId(VALID_ID), DownloadCandidate("140", "m4a"), tmp_path / "out")

    async def test_exec_format_error(self, settings: Settings, tmp_path: Path) -> None:
        """Test a binary the kernel cannot execute fails the attempt cleanly."""
        binary = tmp_path / "not-a-program"
        binary.write_bytes(b"\x00\x01garbage")
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR)

        with pytest.raises(DownloaderError, match="Could not start downloader"):
            await make_downloader(settings, binary).download(
                SourceId(VALID_ID), DownloadCandidate("140", "m4a"), tmp_path / "out"
            )
