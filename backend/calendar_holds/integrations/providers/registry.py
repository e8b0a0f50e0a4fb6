from __future__ import annotations

from datetime import datetime
from typing import Optional

from calendar_holds.integrations.providers.base import BusyPeriod, BusySource
from calendar_holds.integrations.providers.native import NativeBusySource


class BusySourceRegistry:
    """Resolves the busy overlay for an account by its ``calendar_type``.

    The registry is itself a ``BusySource`` so callers never need to know
    which provider backs a given calendar.
    """

    name = "registry"

    def __init__(self, sources: Optional[dict[str, BusySource]] = None):
        self._sources: dict[str, BusySource] = {"native": NativeBusySource()}
        if sources:
            self._sources.update(sources)

    def register(self, calendar_type: str, source: BusySource) -> None:
        self._sources[calendar_type] = source

    def resolve(self, calendar_type: Optional[str]) -> BusySource:
        return self._sources.get(calendar_type or "native", self._sources["native"])

    async def busy_periods(self, account, start: datetime, end: datetime) -> list[BusyPeriod]:
        return await self.resolve(account.calendar_type).busy_periods(account, start, end)
