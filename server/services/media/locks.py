"""Per-key async locks with bounded wait and forced takeover.

Used as the critical section for "download source id X". Locks are keyed so
unrelated ids never wait on each other. A waiter that exceeds the bounded
wait takes the lock over instead of failing: liveness wins over strict
mutual exclusion under pathological conditions, and the takeover is logged.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _KeyedLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    owner: str = ""
    waiters: int = 0


class KeyedLockRegistry:
    """Map of per-key locks. Entries exist only while held or awaited."""

    def __init__(self, wait_timeout: float = 180.0):
        self.wait_timeout = wait_timeout
        self._locks: Dict[str, _KeyedLock] = {}
        self.takeovers = 0

    def is_locked(self, key: str) -> bool:
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    def held_keys(self) -> List[str]:
        return [key for key, entry in self._locks.items() if entry.lock.locked()]

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[str]:
        """Hold the lock for ``key`` for the duration of the block.

        Yields:
            Owner token for this holder

        Never raises on timeout: the stale holder is displaced and this
        caller proceeds.
        """
        timeout = self.wait_timeout if timeout is None else timeout
        entry = self._locks.setdefault(key, _KeyedLock())
        token = str(uuid.uuid4())

        entry.waiters += 1
        try:
            await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            held = entry
        except asyncio.TimeoutError:
            self.takeovers += 1
            logger.warning("Lock wait timed out, forcing takeover",
                           key=key, timeout=timeout, stale_owner=entry.owner[:8])
            # Replace the lock so the stale holder's release cannot free ours
            held = _KeyedLock()
            self._locks[key] = held
            await held.lock.acquire()
        finally:
            entry.waiters -= 1
            # Cancelled while waiting on an otherwise idle lock
            if self._locks.get(key) is entry and not entry.lock.locked() and entry.waiters == 0:
                del self._locks[key]

        entry = held
        entry.owner = token
        logger.debug("Lock acquired", key=key, token=token[:8])
        try:
            yield token
        finally:
            # Only release if we still own the current lock for this key
            current = self._locks.get(key)
            if entry.owner == token and entry.lock.locked():
                entry.owner = ""
                entry.lock.release()
            if current is entry and not entry.lock.locked() and entry.waiters == 0:
                del self._locks[key]
            logger.debug("Lock released", key=key, token=token[:8])
