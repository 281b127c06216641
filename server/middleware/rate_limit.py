"""Per-client rate limiting."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import get_logger
from middleware.errors import error_response
from services.media.exceptions import RateLimitedError

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed window counter per client address; 429 with Retry-After."""

    async def dispatch(self, request: Request, call_next):
        if not container.settings().rate_limit_enabled:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        allowed, retry_after = container.rate_limit_store().hit(client)
        if not allowed:
            logger.warning("Rate limit exceeded", client=client,
                           path=request.url.path, retry_after=retry_after)
            return error_response(RateLimitedError(retry_after))

        return await call_next(request)
