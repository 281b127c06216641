"""Audio routes: resolve a source id and stream it."""

from fastapi import APIRouter, Depends, Request

from core.config import Settings
from core.container import container
from core.logging import get_logger
from services.media.coordinator import DownloadCoordinator
from services.media.exceptions import UpstreamUnavailableError
from services.media.range_streamer import RangeStreamer
from services.media.resolver import StreamResolver
from services.media.validation import SourceId

logger = get_logger(__name__)
router = APIRouter(tags=["audio"])


@router.api_route("/audio/{source_id}", methods=["GET", "HEAD"])
async def stream_audio(
    source_id: str,
    request: Request,
    settings: Settings = Depends(lambda: container.settings()),
    coordinator: DownloadCoordinator = Depends(lambda: container.coordinator()),
    resolver: StreamResolver = Depends(lambda: container.resolver()),
    streamer: RangeStreamer = Depends(lambda: container.range_streamer())
):
    """Stream audio for a source id, range aware.

    Local mode downloads into the cache (once per id) and serves the file;
    proxy mode relays the best upstream variant without persisting it.
    """
    source_id = SourceId.parse(source_id)
    range_header = request.headers.get("range")
    head = request.method == "HEAD"

    if settings.effective_mode == "local":
        entry = await coordinator.acquire(source_id)
        return streamer.stream(entry.file_path, range_header, head=head)

    url = await resolver.resolve(source_id)
    if url is None:
        raise UpstreamUnavailableError("No audio stream available")
    logger.info("Relaying upstream audio", source_id=source_id.value, range=range_header)
    return await resolver.relay(url, range_header, head=head)


@router.get("/info/{source_id}")
async def track_info(
    source_id: str,
    resolver: StreamResolver = Depends(lambda: container.resolver())
):
    """Track metadata from the upstream resolution services."""
    info = await resolver.info(SourceId.parse(source_id))
    return info.model_dump()
