"""Authentication middleware for route protection."""

import secrets
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from constants import AUTH_HEADER
from core.container import container
from core.logging import get_logger
from middleware.errors import error_response
from services.media.exceptions import UnauthorizedError

logger = get_logger(__name__)

# Public routes that don't require authentication
PUBLIC_PATHS = frozenset([
    "/health",
])

# Read-only search, public unless AUTH_EXEMPT_SEARCH=false
SEARCH_PATH = "/search"


class AuthMiddleware(BaseHTTPMiddleware):
    """Shared-secret token check via X-Auth-Token or a bearer token."""

    async def dispatch(self, request: Request, call_next):
        # Preflights never carry credentials
        if request.method == "OPTIONS" or self._is_public_path(request.url.path):
            return await call_next(request)

        token = self._extract_token(request)
        expected = container.auth_token()

        if not token or not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Unauthorized request", path=request.url.path,
                           token_present=token is not None)
            return error_response(UnauthorizedError())

        return await call_next(request)

    def _is_public_path(self, path: str) -> bool:
        """Check if path is public (no auth required)."""
        if path in PUBLIC_PATHS:
            return True
        return path == SEARCH_PATH and container.settings().auth_exempt_search

    def _extract_token(self, request: Request) -> Optional[str]:
        token = request.headers.get(AUTH_HEADER)
        if token:
            return token.strip()

        authorization = request.headers.get("authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return None
