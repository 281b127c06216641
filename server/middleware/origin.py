"""Origin allow-list gate.

Browser origins must be loopback, private-network or the mobile shell.
Requests without an Origin header come from native clients and pass.
Foreign origins are refused here with 403; preflights and the
``Access-Control-*`` headers for allowed origins are left to Starlette's
CORSMiddleware, configured from the same pattern in ``main.py``.
"""

import re
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_logger
from middleware.errors import error_response
from services.media.exceptions import ForbiddenError

logger = get_logger(__name__)

_OCTET = r"\d{1,3}"

ALLOWED_ORIGIN_PATTERN = re.compile(
    r"^(?:https?://(?:"
    r"localhost"
    rf"|127(?:\.{_OCTET}){{3}}"
    r"|\[::1\]"
    rf"|10(?:\.{_OCTET}){{3}}"
    rf"|192\.168(?:\.{_OCTET}){{2}}"
    rf"|172\.(?:1[6-9]|2\d|3[01])(?:\.{_OCTET}){{2}}"
    rf"|169\.254(?:\.{_OCTET}){{2}}"
    r")(?::\d{1,5})?"
    r"|capacitor://localhost)$"
)

def is_allowed_origin(origin: Optional[str]) -> bool:
    return origin is not None and ALLOWED_ORIGIN_PATTERN.match(origin) is not None


class OriginPolicyMiddleware(BaseHTTPMiddleware):
    """Reject requests from foreign origins with 403."""

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        if origin is not None and not is_allowed_origin(origin):
            logger.warning("Rejected origin", origin=origin, path=request.url.path)
            return error_response(ForbiddenError("Origin not allowed"))
        return await call_next(request)
