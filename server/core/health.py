"""Health check utilities for the /health endpoint.

Provides uptime tracking plus a summary of the audio mode and cache state.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

try:
    import psutil
    PSUTIL_AVAILABLE = True
except ImportError:
    PSUTIL_AVAILABLE = False

if TYPE_CHECKING:
    from core.config import Settings
    from services.media.cache_store import CacheStore
    from services.media.coordinator import DownloadCoordinator

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    if not PSUTIL_AVAILABLE:
        return 0.0
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except Exception:
        return 0.0


def get_disk_percent(path: str = ".") -> float:
    """Get disk usage percentage for given path."""
    if not PSUTIL_AVAILABLE:
        return 0.0
    try:
        return psutil.disk_usage(path).percent
    except Exception:
        return 0.0


def get_health_status(
    cache_store: "CacheStore",
    coordinator: "DownloadCoordinator",
    settings: "Settings"
) -> Dict[str, Any]:
    """Liveness payload for /health.

    Returns:
        Dict containing status, uptime, mode, cache summary and resource usage.
    """
    info = cache_store.info(in_flight=coordinator.in_flight())

    return {
        "status": "ok",
        "uptime_seconds": round(get_uptime(), 1),
        "mode": settings.effective_mode,
        "downloader_available": settings.downloader_available,
        "cache": {
            "files": info.file_count,
            "size_mb": round(info.total_bytes / (1024 * 1024), 2),
            "max_size_mb": settings.max_cache_size_mb,
            "in_flight": len(info.in_flight),
        },
        "memory_mb": round(get_memory_mb(), 1),
        "disk_percent": round(get_disk_percent(str(cache_store.directory)), 1),
        "psutil_available": PSUTIL_AVAILABLE,
    }
