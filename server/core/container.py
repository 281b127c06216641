"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.auth_token import resolve_auth_token
from core.cleanup import CacheEvictionService
from core.config import Settings
from services.media.cache_store import CacheStore
from services.media.coordinator import DownloadCoordinator
from services.media.downloader import YtDlpDownloader
from services.media.library import MediaLibrary
from services.media.local_files import LocalMediaAccess
from services.media.locks import KeyedLockRegistry
from services.media.range_streamer import RangeStreamer
from services.media.resolver import StreamResolver
from services.media.search import CatalogSearch
from services.rate_limit import RateLimitStore


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    Every stateful component is a process-scoped singleton. Tests call
    ``reset_singletons()`` or override providers to get isolated instances.
    """

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    auth_token = providers.Singleton(
        resolve_auth_token,
        settings=settings
    )

    # Cache and downloads
    cache_store = providers.Singleton(
        CacheStore,
        settings=settings
    )

    lock_registry = providers.Singleton(
        KeyedLockRegistry,
        wait_timeout=settings.provided.lock_wait_timeout
    )

    downloader = providers.Singleton(
        YtDlpDownloader,
        settings=settings
    )

    coordinator = providers.Singleton(
        DownloadCoordinator,
        cache_store=cache_store,
        locks=lock_registry,
        downloader=downloader,
        settings=settings
    )

    eviction_service = providers.Singleton(
        CacheEvictionService,
        cache_store=cache_store,
        coordinator=coordinator,
        settings=settings
    )

    # Streaming
    range_streamer = providers.Singleton(
        RangeStreamer
    )

    resolver = providers.Singleton(
        StreamResolver,
        settings=settings
    )

    local_media = providers.Singleton(
        LocalMediaAccess,
        settings=settings,
        cache_store=cache_store
    )

    media_library = providers.Singleton(
        MediaLibrary,
        settings=settings,
        local_media=local_media
    )

    catalog_search = providers.Singleton(
        CatalogSearch,
        settings=settings
    )

    # Security
    rate_limit_store = providers.Singleton(
        RateLimitStore,
        max_requests=settings.provided.rate_limit_requests,
        window_seconds=settings.provided.rate_limit_window,
        prune_threshold=settings.provided.rate_limit_prune_threshold
    )


# Global container instance
container = Container()
