"""Periodic cache eviction for the long-running server.

Sweeps once on start, every ``EVICTION_INTERVAL`` seconds after that, and a
final time on graceful shutdown. The sweep itself is blocking filesystem
work and runs in a worker thread.
"""
import asyncio
from typing import Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from services.media.cache_store import CacheStore
    from services.media.coordinator import DownloadCoordinator
    from services.media.models import EvictionReport

logger = get_logger(__name__)


class CacheEvictionService:
    """Background task enforcing the cache size and age budgets."""

    def __init__(
        self,
        cache_store: "CacheStore",
        coordinator: "DownloadCoordinator",
        settings: "Settings"
    ):
        self.cache_store = cache_store
        self.coordinator = coordinator
        self.interval = settings.eviction_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the startup sweep and schedule periodic sweeps."""
        if self._running:
            return
        self._running = True
        await self.sweep()
        self._task = asyncio.create_task(self._eviction_loop())
        logger.info(
            "Cache eviction service started",
            interval=self.interval,
            max_size_mb=self.cache_store.max_bytes // (1024 * 1024),
            max_age_days=self.cache_store.max_age_days
        )

    async def stop(self) -> None:
        """Cancel the loop and run the shutdown sweep."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.sweep()
        logger.info("Cache eviction service stopped", sweeps=self.sweeps)

    async def sweep(self) -> Optional["EvictionReport"]:
        """One eviction pass. Failures are logged, never raised."""
        try:
            report = await asyncio.to_thread(
                self.cache_store.evict,
                protected=self.coordinator.in_flight()
            )
        except Exception as e:
            logger.error("Cache eviction failed", error=str(e), exc_info=True)
            return None
        self.sweeps += 1
        return report

    async def _eviction_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            await self.sweep()
