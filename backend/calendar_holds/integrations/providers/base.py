from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from calendar_holds.models import CalendarAccount


@dataclass
class BusyPeriod:
    start: datetime  # naive UTC
    end: datetime
    source: str = "calendar"  # calendar | blackout | hold

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


class BusySource(Protocol):
    """Read-only overlay of periods a calendar already has booked."""

    name: str

    async def busy_periods(
        self,
        account: "CalendarAccount",
        start: datetime,
        end: datetime,
    ) -> list[BusyPeriod]:
        ...
