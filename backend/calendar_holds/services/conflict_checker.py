"""Interval conflict detection for provisional holds.

Intervals are half-open: ``[a0, a1)`` and ``[b0, b1)`` overlap iff
``a0 < b1 and b0 < a1``. Abutting intervals therefore never conflict,
while containment in either direction always does.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.clock import to_utc_naive
from calendar_holds.core.errors import InvalidInterval
from calendar_holds.integrations.providers.base import BusyPeriod, BusySource
from calendar_holds.models import BlackoutPeriod, CalendarAccount, HoldStatus, ProvisionalHold
from calendar_holds.services.calendar_accounts import resolve_account

logger = logging.getLogger(__name__)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def validate_interval(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """Normalize to naive UTC and reject empty or inverted intervals."""
    start, end = to_utc_naive(start), to_utc_naive(end)
    if start >= end:
        raise InvalidInterval(f"Interval start {start.isoformat()} must be before end {end.isoformat()}")
    return start, end


class ConflictChecker:
    """Read-only check of a candidate interval against one calendar.

    Sources, cheapest first: active holds, the owner's blackout periods,
    then the external busy overlay (if any).
    """

    def __init__(self, session: AsyncSession, busy_source: Optional[BusySource] = None):
        self.session = session
        self.busy_source = busy_source

    async def is_available(self, calendar: Any, start: datetime, end: datetime) -> bool:
        start, end = validate_interval(start, end)
        account = await resolve_account(self.session, calendar)
        conflicts = await self.find_conflicts(account, start, end, stop_at_first=True)
        return not conflicts

    async def find_conflicts(
        self,
        account: CalendarAccount,
        start: datetime,
        end: datetime,
        stop_at_first: bool = False,
        include_external: bool = True,
    ) -> List[BusyPeriod]:
        start, end = validate_interval(start, end)

        conflicts = await self._active_hold_conflicts(account, start, end)
        if conflicts and stop_at_first:
            return conflicts

        conflicts += await self._blackout_conflicts(account, start, end)
        if conflicts and stop_at_first:
            return conflicts

        if include_external:
            conflicts += await self.external_conflicts(account, start, end)

        if conflicts:
            logger.debug(
                f"{len(conflicts)} conflict(s) for {account.calendar_email} "
                f"in [{start.isoformat()}, {end.isoformat()})"
            )
        return conflicts

    async def external_conflicts(self, account: CalendarAccount, start: datetime, end: datetime) -> List[BusyPeriod]:
        """Busy periods from the account's provider that touch [start, end)"""
        if self.busy_source is None:
            return []
        external = await self.busy_source.busy_periods(account, start, end)
        return [period for period in external if period.overlaps(start, end)]

    async def _active_hold_conflicts(
        self, account: CalendarAccount, start: datetime, end: datetime
    ) -> List[BusyPeriod]:
        result = await self.session.execute(
            select(ProvisionalHold.slot_start, ProvisionalHold.slot_end).where(
                ProvisionalHold.calendar_account_id == account.id,
                ProvisionalHold.status == HoldStatus.ACTIVE.value,
                ProvisionalHold.slot_start < end,
                ProvisionalHold.slot_end > start,
            )
        )
        return [BusyPeriod(start=row.slot_start, end=row.slot_end, source="hold") for row in result]

    async def _blackout_conflicts(
        self, account: CalendarAccount, start: datetime, end: datetime
    ) -> List[BusyPeriod]:
        result = await self.session.execute(
            select(BlackoutPeriod.start_time, BlackoutPeriod.end_time).where(
                BlackoutPeriod.user_email == account.user_email,
                BlackoutPeriod.is_active.is_(True),
                BlackoutPeriod.start_time < end,
                BlackoutPeriod.end_time > start,
            )
        )
        return [BusyPeriod(start=row.start_time, end=row.end_time, source="blackout") for row in result]
