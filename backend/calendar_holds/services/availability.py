"""Multi-calendar availability search.

Each active calendar contributes the slots that fit inside its owner's
working hours and do not touch a busy period, blackout or active hold.
A slot is offered only where every calendar is free (intersection).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Hashable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.clock import Clock, to_utc_naive, utcnow
from calendar_holds.core.config import Settings
from calendar_holds.core.errors import InvalidInterval, NotFound
from calendar_holds.integrations.providers.base import BusySource
from calendar_holds.models import CalendarAccount, WorkingHours
from calendar_holds.services.conflict_checker import ConflictChecker, validate_interval

logger = logging.getLogger(__name__)

# day_of_week (0=Sunday) -> (start, end, timezone name)
WeeklyHours = Dict[int, Tuple[time, time, str]]


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class AvailabilityCache:
    """In-memory slot cache; any hold or calendar change clears it."""

    def __init__(self, ttl_minutes: int, clock: Clock = utcnow):
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock
        self._entries: Dict[Hashable, Tuple[datetime, List[TimeSlot]]] = {}

    def get(self, key: Hashable) -> Optional[List[TimeSlot]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, slots = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return None
        return slots

    def set(self, key: Hashable, slots: List[TimeSlot]) -> None:
        self._entries[key] = (self.clock() + self.ttl, slots)

    def clear(self) -> None:
        if self._entries:
            logger.debug(f"Availability cache cleared ({len(self._entries)} entries)")
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def sunday_first_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def working_windows(hours: WeeklyHours, start: datetime, end: datetime) -> List[Tuple[datetime, datetime]]:
    """Working-hour windows (naive UTC) for every local day touching [start, end)."""
    windows = []
    day = (start - timedelta(days=1)).date()
    last_day = (end + timedelta(days=1)).date()
    while day <= last_day:
        span = hours.get(sunday_first_weekday(day))
        if span:
            open_at, close_at, tz_name = span
            tz = ZoneInfo(tz_name)
            window_start = to_utc_naive(datetime.combine(day, open_at, tzinfo=tz))
            window_end = to_utc_naive(datetime.combine(day, close_at, tzinfo=tz))
            if window_start < end and start < window_end:
                windows.append((window_start, window_end))
        day += timedelta(days=1)
    return windows


def candidate_slots(
    windows: Sequence[Tuple[datetime, datetime]],
    start: datetime,
    end: datetime,
    duration: timedelta,
    interval: timedelta,
) -> List[TimeSlot]:
    """Fixed-interval slots aligned to each window's opening time."""
    slots = []
    for window_start, window_end in windows:
        slot_start = window_start
        while slot_start + duration <= window_end:
            slot_end = slot_start + duration
            if slot_start >= start and slot_end <= end:
                slots.append(TimeSlot(slot_start, slot_end))
            slot_start += interval
    return slots


def intersect_slots(first: Sequence[TimeSlot], second: Sequence[TimeSlot]) -> List[TimeSlot]:
    intersected = []
    for a in first:
        for b in second:
            overlap_start = max(a.start, b.start)
            overlap_end = min(a.end, b.end)
            if overlap_start < overlap_end:
                intersected.append(TimeSlot(overlap_start, overlap_end))
    return intersected


def intersect_free_slots(per_calendar: Sequence[Sequence[TimeSlot]], min_duration: timedelta) -> List[TimeSlot]:
    if not per_calendar:
        return []
    intersected = list(per_calendar[0])
    for other in per_calendar[1:]:
        intersected = intersect_slots(intersected, other)
    unique = {slot for slot in intersected if slot.duration >= min_duration}
    return sorted(unique, key=lambda slot: slot.start)


class AvailabilityService:
    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        busy_source: Optional[BusySource] = None,
        cache: Optional[AvailabilityCache] = None,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.settings = settings
        self.checker = ConflictChecker(session, busy_source)
        self.cache = cache
        self.clock = clock

    async def find_slots(
        self,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        max_slots: Optional[int] = None,
    ) -> List[TimeSlot]:
        """Slots of ``duration_minutes`` free on every active calendar."""
        start, end = validate_interval(start, end)
        if duration_minutes <= 0:
            raise InvalidInterval(f"Duration must be positive, got {duration_minutes} minute(s)")
        max_slots = max_slots or self.settings.max_slots

        # Past slots are never offered.
        start = max(start, self.clock())
        if start >= end:
            return []

        cache_key = (start.replace(second=0, microsecond=0), end, duration_minutes)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for availability")
                return cached[:max_slots]

        result = await self.session.execute(
            select(CalendarAccount)
            .where(CalendarAccount.is_active.is_(True))
            .order_by(CalendarAccount.priority.desc())
        )
        accounts = list(result.scalars().all())
        if not accounts:
            raise NotFound("No active calendar accounts")

        duration = timedelta(minutes=duration_minutes)
        interval = timedelta(minutes=self.settings.slot_interval_minutes)

        per_calendar = []
        for account in accounts:
            hours = await self._weekly_hours(account.user_email)
            windows = working_windows(hours, start, end)
            candidates = candidate_slots(windows, start, end, duration, interval)
            busy = await self.checker.find_conflicts(account, start, end)
            free = [
                slot for slot in candidates
                if not any(period.overlaps(slot.start, slot.end) for period in busy)
            ]
            logger.debug(f"{account.calendar_email}: {len(free)}/{len(candidates)} candidate slot(s) free")
            per_calendar.append(free)

        slots = intersect_free_slots(per_calendar, duration)
        if self.cache is not None:
            self.cache.set(cache_key, slots)

        logger.info(f"Found {len(slots)} available slot(s) across {len(accounts)} calendar(s)")
        return slots[:max_slots]

    async def _weekly_hours(self, user_email: str) -> WeeklyHours:
        result = await self.session.execute(
            select(WorkingHours).where(
                WorkingHours.user_email == user_email,
                WorkingHours.is_active.is_(True),
            )
        )
        rows = list(result.scalars().all())
        if rows:
            return {row.day_of_week: (row.start_time, row.end_time, row.timezone) for row in rows}

        # Monday to Friday on the configured default workday.
        return {
            day: (
                self.settings.default_workday_start,
                self.settings.default_workday_end,
                self.settings.default_timezone,
            )
            for day in range(1, 6)
        }


def slot_to_dict(slot: TimeSlot) -> dict:
    return {
        "start": slot.start.replace(tzinfo=timezone.utc).isoformat(),
        "end": slot.end.replace(tzinfo=timezone.utc).isoformat(),
        "duration_minutes": int(slot.duration.total_seconds() // 60),
    }
