from __future__ import annotations

from datetime import datetime

from calendar_holds.integrations.providers.base import BusyPeriod


class NativeBusySource:
    """Accounts without an external calendar contribute no busy periods."""

    name = "native"

    async def busy_periods(self, account, start: datetime, end: datetime) -> list[BusyPeriod]:
        return []
