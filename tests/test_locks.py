"""Tests for per-key locks with bounded wait and forced takeover."""

import asyncio

from services.media.locks import KeyedLockRegistry


class TestKeyedLockRegistry:
    """Test mutual exclusion per key and takeover on timeout."""

    async def test_same_key_is_serialized(self) -> None:
        registry = KeyedLockRegistry(wait_timeout=5)
        active = 0
        peak = 0

        async def worker() -> None:
            nonlocal active, peak
            async with registry.hold("k"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1
        assert not registry.is_locked("k")
        assert registry.held_keys() == []

    async def test_different_keys_run_in_parallel(self) -> None:
        registry = KeyedLockRegistry(wait_timeout=5)
        both_held = asyncio.Event()

        async def worker(key: str) -> None:
            async with registry.hold(key):
                if len(registry.held_keys()) == 2:
                    both_held.set()
                await asyncio.wait_for(both_held.wait(), timeout=1)

        await asyncio.gather(worker("a"), worker("b"))

        assert both_held.is_set()

    async def test_released_on_exception(self) -> None:
        registry = KeyedLockRegistry(wait_timeout=5)

        try:
            async with registry.hold("k"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert not registry.is_locked("k")
        async with registry.hold("k", timeout=0.1):
            assert registry.is_locked("k")
        assert registry.takeovers == 0

    async def test_takeover_after_bounded_wait(self) -> None:
        """Test a stuck holder is displaced and its late release is harmless."""
        registry = KeyedLockRegistry(wait_timeout=5)
        stale_may_release = asyncio.Event()
        stale_holding = asyncio.Event()

        async def stale_holder() -> None:
            async with registry.hold("k"):
                stale_holding.set()
                await stale_may_release.wait()

        stale = asyncio.create_task(stale_holder())
        await stale_holding.wait()

        async with registry.hold("k", timeout=0.05) as token:
            assert token
            assert registry.takeovers == 1
            # The stale holder exits while we still own the key
            stale_may_release.set()
            await stale
            assert registry.is_locked("k")

        assert not registry.is_locked("k")
        assert registry.held_keys() == []

    async def test_cancelled_waiter_leaves_no_entry(self) -> None:
        registry = KeyedLockRegistry(wait_timeout=5)
        release = asyncio.Event()

        async def holder() -> None:
            async with registry.hold("k"):
                await release.wait()

        async def waiter() -> None:
            async with registry.hold("k"):
                pass

        holding = asyncio.create_task(holder())
        await asyncio.sleep(0)
        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0.01)
        waiting.cancel()
        release.set()
        await holding
        await asyncio.gather(waiting, return_exceptions=True)

        assert registry.held_keys() == []
        assert not registry.is_locked("k")
