from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from calendar_holds.core.clock import Clock, utcnow
from calendar_holds.services.hold_store import HoldStore

logger = logging.getLogger(__name__)


class HoldExpirySweeper:
    """Periodically expires lapsed holds so they stop blocking new ones.

    A failed sweep is logged and simply retried on the next tick.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        interval_seconds: float = 60.0,
        clock: Clock = utcnow,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.on_change = on_change
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        async with self.session_factory() as session:
            store = HoldStore(session, clock=self.clock, on_change=self.on_change)
            return await store.expire_due(self.clock())

    async def _tick(self) -> Optional[int]:
        try:
            return await self.run_once()
        except Exception:
            logger.exception("Hold expiry sweep failed; retrying next tick")
            return None

    async def _run(self) -> None:
        logger.info(f"Hold expiry sweeper started (every {self.interval_seconds:g}s)")
        while not self._stopping.is_set():
            await self._tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("Hold expiry sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="hold-expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
