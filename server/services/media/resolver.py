"""Proxy-mode audio resolution and byte relay.

Used when no local downloader is available. An ordered list of
interchangeable upstream services maps a source id to a direct audio URL;
the bytes are relayed to the client without being persisted.

The index of the last service that answered is kept as explicit state and
tried first on the next call (sticky preference, not round-robin).
"""

import re
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypeVar, Union

import httpx
from fastapi.responses import Response, StreamingResponse

from constants import USER_AGENT
from core.config import Settings
from core.logging import get_logger, log_execution_time, log_upstream_call
from services.media.exceptions import (
    RangeNotSatisfiableError,
    TooLargeError,
    TooManyRedirectsError,
    UpstreamUnavailableError,
)
from services.media.models import AudioStream, TrackInfo
from services.media.providers import ResolutionProvider, build_provider
from services.media.validation import SourceId, require_object

logger = get_logger(__name__)

T = TypeVar("T")

# Upstream headers passed through to the client
_FORWARD_HEADERS = ("content-type", "content-length", "content-range")

_UNSATISFIED_RANGE = re.compile(r"^bytes \*/(\d+)$")


class StreamResolver:
    """Resolves ids through upstream providers and relays their streams."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.providers: List[ResolutionProvider] = [
            build_provider(kind, base) for kind, base in settings.resolver_candidates
        ]
        self.preferred_index = 0
        self.preferred_container = settings.preferred_container
        self.timeout = settings.resolver_timeout
        self.relay_timeout = settings.relay_timeout
        self.max_bytes = settings.relay_max_bytes
        self.max_redirects = settings.relay_max_redirects
        self._client = client
        self._owns_client = client is None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.relay_timeout,
                follow_redirects=False,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def startup(self) -> None:
        _ = self.client
        logger.info("Stream resolver ready",
                    instances=[p.name for p in self.providers])

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def candidate_order(self) -> List[int]:
        """Provider indexes, last successful one first."""
        count = len(self.providers)
        return [(self.preferred_index + offset) % count for offset in range(count)]

    def select_best(self, streams: List[AudioStream]) -> Optional[AudioStream]:
        """Preferred container first, then highest bitrate."""
        if not streams:
            return None
        ranked = sorted(
            streams,
            key=lambda s: (self.preferred_container in s.mime_type, s.bitrate),
            reverse=True,
        )
        return ranked[0]

    async def resolve(self, source_id: Union[str, SourceId]) -> Optional[str]:
        """Return a direct audio URL for ``source_id`` or None if every
        upstream failed."""
        source_id = SourceId.parse(source_id)

        def pick(provider: ResolutionProvider, data: Dict[str, Any]) -> Optional[str]:
            best = self.select_best(provider.parse_streams(data))
            return best.url if best else None

        return await self._first_success(source_id, "streams", pick)

    async def info(self, source_id: Union[str, SourceId]) -> TrackInfo:
        """Track metadata through the same candidate iteration.

        Raises:
            UpstreamUnavailableError: every upstream failed
        """
        source_id = SourceId.parse(source_id)
        result = await self._first_success(
            source_id, "info", lambda provider, data: provider.parse_info(source_id, data)
        )
        if result is None:
            raise UpstreamUnavailableError()
        return result

    async def _first_success(self, source_id: SourceId, operation: str,
                             extract: Callable[[ResolutionProvider, Dict[str, Any]], Optional[T]]
                             ) -> Optional[T]:
        for index in self.candidate_order():
            provider = self.providers[index]
            start = time.time()
            try:
                response = await self.client.get(
                    provider.streams_url(source_id), timeout=self.timeout
                )
                response.raise_for_status()
                result = extract(provider, require_object(response.json()))
            except (httpx.HTTPError, ValueError) as e:
                log_upstream_call(logger, provider.name, operation, False,
                                  source_id=source_id.value, error=str(e) or type(e).__name__)
                continue

            if result is None:
                log_upstream_call(logger, provider.name, operation, False,
                                  source_id=source_id.value, error="no audio streams")
                continue

            self.preferred_index = index
            log_upstream_call(logger, provider.name, operation, True,
                              source_id=source_id.value)
            log_execution_time(logger, f"resolve_{operation}", start, time.time(),
                               instance=provider.name)
            return result

        logger.error("All upstream instances failed",
                     source_id=source_id.value, operation=operation)
        return None

    # =========================================================================
    # RELAY
    # =========================================================================

    async def relay(self, url: str, range_header: Optional[str] = None,
                    head: bool = False) -> Response:
        """Relay ``url`` to the client, forwarding ``Range``.

        Raises:
            TooManyRedirectsError: redirect chain longer than the bound
            UpstreamUnavailableError: connection failure or upstream error status
            TooLargeError: declared Content-Length above the relay cap
            RangeNotSatisfiableError: upstream answered 416
        """
        # Bodies are relayed decoded, so ask for them unencoded
        headers = {"Accept-Encoding": "identity"}
        if range_header:
            headers["Range"] = range_header
        upstream = await self._open(url, headers)

        declared = upstream.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > self.max_bytes:
            await upstream.aclose()
            logger.warning("Upstream body exceeds relay cap",
                           declared=int(declared), max_bytes=self.max_bytes)
            raise TooLargeError()

        response_headers = {
            name: upstream.headers[name] for name in _FORWARD_HEADERS if name in upstream.headers
        }
        if upstream.headers.get("content-encoding", "identity").lower() != "identity":
            # Decoded length differs from the declared one
            response_headers.pop("content-length", None)
        response_headers["Accept-Ranges"] = "bytes"

        if head:
            await upstream.aclose()
            return Response(status_code=upstream.status_code, headers=response_headers)

        return StreamingResponse(
            self._relay_body(upstream),
            status_code=upstream.status_code,
            headers=response_headers,
        )

    async def _open(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        """Send the request, following redirects manually up to the bound."""
        for _ in range(self.max_redirects + 1):
            request = self.client.build_request("GET", url, headers=headers)
            try:
                response = await self.client.send(request, stream=True)
            except httpx.HTTPError as e:
                logger.warning("Relay connection failed", error=str(e) or type(e).__name__)
                raise UpstreamUnavailableError()

            if response.is_redirect:
                location = response.headers["location"]
                await response.aclose()
                url = str(response.url.join(location))
                continue

            if response.status_code == 416:
                await response.aclose()
                match = _UNSATISFIED_RANGE.match(response.headers.get("content-range", ""))
                logger.info("Upstream rejected range", range=headers.get("Range"))
                raise RangeNotSatisfiableError(int(match.group(1)) if match else None)

            if response.status_code >= 400:
                await response.aclose()
                logger.warning("Relay upstream error", status=response.status_code)
                raise UpstreamUnavailableError()
            return response

        logger.warning("Relay redirect limit exceeded", max_redirects=self.max_redirects)
        raise TooManyRedirectsError()

    async def _relay_body(self, upstream: httpx.Response) -> AsyncIterator[bytes]:
        sent = 0
        try:
            async for chunk in upstream.aiter_bytes():
                sent += len(chunk)
                if sent > self.max_bytes:
                    logger.warning("Relay size cap reached, aborting", sent=sent,
                                   max_bytes=self.max_bytes)
                    break
                yield chunk
        except httpx.HTTPError as e:
            # Headers are already sent; the stream just ends
            logger.warning("Relay stream interrupted", sent=sent, error=str(e))
        finally:
            await upstream.aclose()
