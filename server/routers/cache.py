"""Cache administration routes."""

import asyncio

from fastapi import APIRouter, Depends

from core.container import container
from core.logging import get_logger
from services.media.cache_store import CacheStore
from services.media.coordinator import DownloadCoordinator

logger = get_logger(__name__)
router = APIRouter(prefix="/cache", tags=["cache"])


@router.post("/clear")
async def clear_cache(
    cache_store: CacheStore = Depends(lambda: container.cache_store()),
    coordinator: DownloadCoordinator = Depends(lambda: container.coordinator())
):
    """Delete cached files. Downloads in flight are left alone."""
    report = await asyncio.to_thread(cache_store.clear, protected=coordinator.in_flight())
    return {"success": True, **report.model_dump()}


@router.get("/info")
async def cache_info(
    cache_store: CacheStore = Depends(lambda: container.cache_store()),
    coordinator: DownloadCoordinator = Depends(lambda: container.coordinator())
):
    """Cache contents and budgets."""
    info = await asyncio.to_thread(cache_store.info, in_flight=coordinator.in_flight())
    return info.model_dump(mode="json")
