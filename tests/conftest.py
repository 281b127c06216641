"""Shared fixtures: isolated settings, container overrides, fake downloader."""

import asyncio
from collections.abc import Generator
from pathlib import Path
from typing import List, Optional, Set

import pytest
from dependency_injector import providers

from core.config import Settings
from core.container import container
from services.media.downloader import DownloadCandidate
from services.media.exceptions import DownloaderError
from services.media.validation import SourceId

TEST_TOKEN = "test-token-0123456789abcdef"
VALID_ID = "dQw4w9WgXcQ"


def pattern_bytes(size: int) -> bytes:
    """Deterministic content so slices can be compared by position."""
    block = bytes(range(256))
    return (block * (size // len(block) + 1))[:size]


class FakeDownloader:
    """Stands in for the yt-dlp wrapper and records every attempt."""

    def __init__(self, size: int = 1024, fail_attempts: int = 0,
                 empty_attempts: int = 0, gate: Optional[asyncio.Event] = None):
        self.size = size
        self.fail_attempts = fail_attempts
        self.empty_attempts = empty_attempts
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: List[DownloadCandidate] = []
        self.outputs: Set[Path] = set()

    async def download(self, source_id: SourceId, candidate: DownloadCandidate,
                       output: Path, timeout: Optional[float] = None) -> None:
        self.calls.append(candidate)
        self.outputs.add(output)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        attempt = len(self.calls)
        if attempt <= self.fail_attempts:
            # Leave a partial file behind like a crashed downloader would
            output.write_bytes(b"partial")
            raise DownloaderError(f"attempt {attempt} failed")
        if attempt <= self.fail_attempts + self.empty_attempts:
            output.write_bytes(b"")
            return
        output.write_bytes(pattern_bytes(self.size))


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    path = tmp_path / "music"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, media_dir: Path) -> Settings:
    """Settings isolated from the environment and the real cache directory."""
    return Settings(
        _env_file=None,
        cache_dir=str(tmp_path / "cache"),
        auth_token=TEST_TOKEN,
        auth_token_file=None,
        auth_exempt_search=True,
        audio_mode="local",
        downloader_cookie_browsers=["firefox"],
        allowed_media_dirs=[str(media_dir)],
        resolver_instances=["piped:https://piped.test", "invidious:https://inv.test"],
        youtube_api_key=None,
        rate_limit_enabled=True,
        rate_limit_requests=100,
        rate_limit_window=60,
        eviction_interval=3600,
    )


@pytest.fixture
def fake_downloader() -> FakeDownloader:
    return FakeDownloader(size=4096)


@pytest.fixture
def app_container(settings: Settings, fake_downloader: FakeDownloader) -> Generator:
    """Container with fresh singletons built from the test settings."""
    container.reset_singletons()
    container.settings.override(providers.Object(settings))
    container.downloader.override(providers.Object(fake_downloader))
    yield container
    container.downloader.reset_override()
    container.settings.reset_override()
    container.reset_singletons()


@pytest.fixture
def auth_headers() -> dict:
    return {"X-Auth-Token": TEST_TOKEN}


@pytest.fixture
def client(app_container) -> Generator:
    """TestClient addressed to a loopback host, with lifespan running."""
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app, base_url="http://localhost") as test_client:
        yield test_client
