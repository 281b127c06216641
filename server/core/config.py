"""Environment-driven configuration with Pydantic v2."""

import shutil
import tempfile
from typing import Annotated, List, Literal, Optional, Tuple
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from constants import DEFAULT_RESOLVER_INSTANCES


def _default_cache_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "media-cache-server")


def _default_media_dirs() -> List[str]:
    home = Path.home()
    return [
        str(home / "Music"),
        str(home / "Downloads"),
        str(home / "Documents"),
        str(home / "Desktop"),
        str(home / "Library" / "Music"),
    ]


def _split_csv(value):
    """Accept comma-separated strings for list settings."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


CsvList = Annotated[List[str], NoDecode]


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3000, env="PORT", ge=1, le=65535)
    debug: bool = Field(default=False, env="DEBUG")

    # Authentication
    auth_token: Optional[str] = Field(default=None, env="AUTH_TOKEN", min_length=16)
    auth_token_file: Optional[str] = Field(default=None, env="AUTH_TOKEN_FILE")
    auth_exempt_search: bool = Field(default=True, env="AUTH_EXEMPT_SEARCH")

    # Audio acquisition
    audio_mode: Literal["auto", "local", "proxy"] = Field(default="auto", env="AUDIO_MODE")
    downloader_path: str = Field(default="yt-dlp", env="DOWNLOADER_PATH")
    downloader_js_runtime: Optional[str] = Field(default=None, env="DOWNLOADER_JS_RUNTIME")
    downloader_formats: CsvList = Field(
        default=["140:m4a", "bestaudio[ext=m4a]:m4a", "bestaudio[ext=webm]:webm"],
        env="DOWNLOADER_FORMATS",
    )
    downloader_cookie_browsers: CsvList = Field(
        default=["firefox", "chrome", "edge", "brave", "opera", "chromium"],
        env="DOWNLOADER_COOKIE_BROWSERS",
    )
    download_attempt_timeout: float = Field(default=120.0, env="DOWNLOAD_ATTEMPT_TIMEOUT", gt=0)
    download_total_timeout: float = Field(default=600.0, env="DOWNLOAD_TOTAL_TIMEOUT", gt=0)
    lock_wait_timeout: float = Field(default=180.0, env="LOCK_WAIT_TIMEOUT", gt=0)

    # Cache Configuration
    cache_dir: str = Field(default_factory=_default_cache_dir, env="CACHE_DIR")
    max_cache_size_mb: int = Field(default=500, env="MAX_CACHE_SIZE_MB", ge=1)
    max_cache_age_days: float = Field(default=7, env="MAX_CACHE_AGE_DAYS", gt=0)
    eviction_interval: int = Field(default=3600, env="EVICTION_INTERVAL", ge=1)

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, env="RATE_LIMIT_ENABLED")
    rate_limit_requests: int = Field(default=100, env="RATE_LIMIT_REQUESTS", ge=1)
    rate_limit_window: int = Field(default=60, env="RATE_LIMIT_WINDOW", ge=1)
    rate_limit_prune_threshold: int = Field(default=10000, env="RATE_LIMIT_PRUNE_THRESHOLD", ge=1)

    # Upstream resolution (proxy mode)
    resolver_instances: CsvList = Field(
        default=list(DEFAULT_RESOLVER_INSTANCES), env="RESOLVER_INSTANCES"
    )
    resolver_timeout: float = Field(default=15.0, env="RESOLVER_TIMEOUT", gt=0)
    preferred_container: str = Field(default="mp4", env="PREFERRED_CONTAINER")
    relay_max_bytes: int = Field(default=100 * 1024 * 1024, env="RELAY_MAX_BYTES", ge=1)
    relay_max_redirects: int = Field(default=5, env="RELAY_MAX_REDIRECTS", ge=0, le=20)
    relay_timeout: float = Field(default=30.0, env="RELAY_TIMEOUT", gt=0)

    # Catalog search
    youtube_api_key: Optional[str] = Field(default=None, env="YOUTUBE_API_KEY")
    search_max_results: int = Field(default=20, env="SEARCH_MAX_RESULTS", ge=1, le=50)

    # Local media
    allowed_media_dirs: CsvList = Field(
        default_factory=_default_media_dirs, env="ALLOWED_MEDIA_DIRS"
    )
    library_scan_max_files: int = Field(default=10000, env="LIBRARY_SCAN_MAX_FILES", ge=1)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="console", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator(
        "downloader_formats",
        "downloader_cookie_browsers",
        "resolver_instances",
        "allowed_media_dirs",
        mode="before",
    )
    @classmethod
    def split_lists(cls, v):
        return _split_csv(v)

    @field_validator("downloader_formats")
    @classmethod
    def validate_formats(cls, v):
        """Each format entry is `<selector>:<container>`."""
        for entry in v:
            selector, sep, container = entry.rpartition(":")
            if not sep or not selector or not container:
                raise ValueError(f"Invalid downloader format entry: {entry!r}")
        return v

    @field_validator("resolver_instances")
    @classmethod
    def validate_instances(cls, v):
        for entry in v:
            kind, sep, base = entry.partition(":")
            if not sep or kind not in ("piped", "invidious") or not base.startswith("http"):
                raise ValueError(f"Invalid resolver instance: {entry!r}")
        return v

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, v):
        """Ensure cache directory exists."""
        Path(v).mkdir(parents=True, exist_ok=True)
        return v

    @property
    def max_cache_bytes(self) -> int:
        return self.max_cache_size_mb * 1024 * 1024

    @property
    def max_cache_age_seconds(self) -> float:
        return self.max_cache_age_days * 24 * 60 * 60

    @property
    def format_candidates(self) -> List[Tuple[str, str]]:
        """Downloader format selectors paired with their output container."""
        pairs = []
        for entry in self.downloader_formats:
            selector, _, container = entry.rpartition(":")
            pairs.append((selector, container))
        return pairs

    @property
    def resolver_candidates(self) -> List[Tuple[str, str]]:
        """Upstream resolution services as (kind, base_url)."""
        return [tuple(entry.split(":", 1)) for entry in self.resolver_instances]

    @property
    def downloader_available(self) -> bool:
        path = Path(self.downloader_path)
        if path.is_file():
            return True
        return shutil.which(self.downloader_path) is not None

    @property
    def effective_mode(self) -> str:
        """Resolve `auto` to local when the downloader binary can be found."""
        if self.audio_mode != "auto":
            return self.audio_mode
        return "local" if self.downloader_available else "proxy"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
