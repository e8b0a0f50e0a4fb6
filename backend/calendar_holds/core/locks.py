from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable

from calendar_holds.core.errors import Busy

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Process-local ``asyncio.Lock`` per key (calendar account id).

    One instance is created by the app factory and shared by every request,
    so all writers for the same calendar queue behind the same lock.
    """

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.get(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {self.timeout_seconds}s waiting for lock {key}")
            raise Busy(f"Calendar {key} is busy, try again shortly") from None
        try:
            yield
        finally:
            lock.release()

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str]) -> AsyncIterator[None]:
        # Sorted acquisition keeps two multi-calendar callers from deadlocking.
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield
