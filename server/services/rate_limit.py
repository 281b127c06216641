"""Per-client fixed-window request counters.

Process-scoped state created with the container and dropped with it. The map
is pruned of expired windows once it grows past a threshold so a stream of
distinct client addresses cannot grow it without bound. Pruning runs at most
once per window.
"""

import math
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


class RateLimitStore:
    """Fixed window counter keyed by client address."""

    def __init__(self, max_requests: int = 100, window_seconds: float = 60,
                 prune_threshold: int = 10000):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prune_threshold = prune_threshold
        self._entries: Dict[str, RateLimitEntry] = {}
        self._next_prune_at = float("-inf")

    def __len__(self) -> int:
        return len(self._entries)

    def hit(self, key: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """Count one request for ``key``.

        Returns:
            ``(allowed, retry_after)``; ``retry_after`` is the remaining window
            in whole seconds (at least 1) when the request is rejected
        """
        now = time.monotonic() if now is None else now

        if len(self._entries) > self.prune_threshold and now >= self._next_prune_at:
            self.prune(now)
            self._next_prune_at = now + self.window_seconds

        entry = self._entries.get(key)
        if entry is None or now > entry.window_reset_at:
            self._entries[key] = RateLimitEntry(count=1, window_reset_at=now + self.window_seconds)
            return True, 0

        entry.count += 1
        if entry.count > self.max_requests:
            return False, max(1, math.ceil(entry.window_reset_at - now))
        return True, 0

    def prune(self, now: Optional[float] = None) -> int:
        """Drop entries whose window has passed. Returns how many were removed."""
        now = time.monotonic() if now is None else now
        expired = [key for key, entry in self._entries.items() if now > entry.window_reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Pruned rate limit entries", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()
        self._next_prune_at = float("-inf")
