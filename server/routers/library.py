"""Local library routes: scan a folder, list the scanned tracks."""

import asyncio

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from core.container import container
from core.logging import get_logger
from services.media.library import MediaLibrary

logger = get_logger(__name__)
router = APIRouter(tags=["library"])


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    folder_path: str = Field(alias="folderPath", min_length=1)


@router.post("/scan")
async def scan_library(
    body: ScanRequest,
    library: MediaLibrary = Depends(lambda: container.media_library())
):
    """Recursively scan an allowed folder for audio files."""
    tracks = await asyncio.to_thread(library.scan, body.folder_path)
    logger.info("Library scanned", folder=body.folder_path, count=len(tracks))
    return {
        "count": len(tracks),
        "tracks": [track.model_dump(by_alias=True) for track in tracks],
    }


@router.get("/tracks")
async def list_tracks(library: MediaLibrary = Depends(lambda: container.media_library())):
    """Tracks found by the last scan."""
    return [track.model_dump(by_alias=True) for track in library.tracks()]
