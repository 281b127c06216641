"""Catalog search route."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.container import container
from services.media.search import CatalogSearch

router = APIRouter(tags=["search"])


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: Optional[int] = Query(None, ge=1, le=50),
    catalog: CatalogSearch = Depends(lambda: container.catalog_search())
):
    """Search music tracks; results use the player's track record shape."""
    records = await catalog.search(q, limit=limit)
    return [record.model_dump(by_alias=True) for record in records]
