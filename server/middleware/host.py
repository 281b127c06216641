"""Host header validation against DNS rebinding.

A public domain resolving to a private address must not reach this service
from a browser, so only loopback, link-local and private-network hosts are
accepted.
"""

import ipaddress
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_logger
from middleware.errors import error_response
from services.media.exceptions import ForbiddenError

logger = get_logger(__name__)

ALLOWED_HOSTNAMES = frozenset(["localhost"])

ALLOWED_NETWORKS = tuple(ipaddress.ip_network(net) for net in (
    "127.0.0.0/8",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "169.254.0.0/16",
    "::1/128",
    "fe80::/10",
))


def extract_hostname(host_header: Optional[str]) -> Optional[str]:
    """Hostname part of a Host header, without port or IPv6 brackets."""
    host = (host_header or "").strip().lower()
    if not host:
        return None
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end > 1 else None
    if host.count(":") > 1:
        # Bare IPv6 literal without port
        return host
    return host.split(":", 1)[0] or None


def is_allowed_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    if hostname in ALLOWED_HOSTNAMES:
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    if address.version == 6 and address.ipv4_mapped:
        address = address.ipv4_mapped
    return any(address in network for network in ALLOWED_NETWORKS)


class HostValidationMiddleware(BaseHTTPMiddleware):
    """Reject requests whose Host is not local or private (403)."""

    async def dispatch(self, request: Request, call_next):
        host_header = request.headers.get("host")
        if not is_allowed_host(extract_hostname(host_header)):
            logger.warning("Rejected host header", host=host_header, path=request.url.path)
            return error_response(ForbiddenError("Forbidden host"))
        return await call_next(request)
