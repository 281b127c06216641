"""Stream local files addressed by file token."""

from fastapi import APIRouter, Depends, Request

from core.container import container
from services.media.local_files import LocalMediaAccess
from services.media.range_streamer import RangeStreamer

router = APIRouter(tags=["stream"])


@router.api_route("/stream/{file_token}", methods=["GET", "HEAD"])
async def stream_file(
    file_token: str,
    request: Request,
    local_media: LocalMediaAccess = Depends(lambda: container.local_media()),
    streamer: RangeStreamer = Depends(lambda: container.range_streamer())
):
    path = local_media.resolve(file_token)
    return streamer.stream(path, request.headers.get("range"), head=request.method == "HEAD")
