from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.errors import InvalidInterval, NotFound
from calendar_holds.models import BlackoutPeriod, WorkingHours
from calendar_holds.services.calendar_accounts import parse_uuid
from calendar_holds.services.conflict_checker import validate_interval

logger = logging.getLogger(__name__)


class AvailabilityControlsService:
    """
    Blackout periods and weekly working hours per calendar owner
    """

    def __init__(self, session: AsyncSession, on_change: Optional[Callable[[], None]] = None):
        self.session = session
        self.on_change = on_change

    # ==================== BLACKOUTS ====================

    async def list_blackouts(
        self,
        user_email: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[BlackoutPeriod]:
        """Active blackouts for a user, optionally only those touching [start, end)"""
        query = select(BlackoutPeriod).where(
            BlackoutPeriod.user_email == user_email,
            BlackoutPeriod.is_active.is_(True),
        )
        if start is not None and end is not None:
            start, end = validate_interval(start, end)
            query = query.where(BlackoutPeriod.start_time < end, BlackoutPeriod.end_time > start)

        result = await self.session.execute(query.order_by(BlackoutPeriod.start_time))
        return list(result.scalars().all())

    async def create_blackout(
        self,
        user_email: str,
        title: str,
        start: datetime,
        end: datetime,
        description: Optional[str] = None,
    ) -> BlackoutPeriod:
        """Create new blackout period"""
        start, end = validate_interval(start, end)
        blackout = BlackoutPeriod(
            user_email=user_email,
            title=title,
            description=description,
            start_time=start,
            end_time=end,
        )
        self.session.add(blackout)
        await self.session.commit()
        await self.session.refresh(blackout)

        logger.info(f"Blackout period created for {user_email}: {title} [{start}, {end})")
        self._changed()
        return blackout

    async def deactivate_blackout(self, blackout_id: Any) -> BlackoutPeriod:
        """Soft delete a blackout period"""
        b_uuid = parse_uuid(blackout_id)
        blackout = None
        if b_uuid is not None:
            result = await self.session.execute(
                select(BlackoutPeriod).where(BlackoutPeriod.id == b_uuid)
            )
            blackout = result.scalar_one_or_none()
        if blackout is None:
            raise NotFound(f"Blackout period {blackout_id} not found")

        blackout.is_active = False
        await self.session.commit()

        logger.info(f"Blackout period deleted: {blackout.id}")
        self._changed()
        return blackout

    # ==================== WORKING HOURS ====================

    async def list_working_hours(self, user_email: str, active_only: bool = True) -> List[WorkingHours]:
        query = select(WorkingHours).where(WorkingHours.user_email == user_email)
        if active_only:
            query = query.where(WorkingHours.is_active.is_(True))
        result = await self.session.execute(query.order_by(WorkingHours.day_of_week))
        return list(result.scalars().all())

    async def upsert_working_hours(
        self,
        user_email: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        timezone: str = "America/New_York",
        is_active: bool = True,
    ) -> WorkingHours:
        """Set the hours for one weekday (0=Sunday ... 6=Saturday)"""
        if not 0 <= day_of_week <= 6:
            raise InvalidInterval("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if start_time >= end_time:
            raise InvalidInterval(f"Working hours must start before they end ({start_time} >= {end_time})")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise InvalidInterval(f"Unknown timezone {timezone!r}") from None

        result = await self.session.execute(
            select(WorkingHours).where(
                WorkingHours.user_email == user_email,
                WorkingHours.day_of_week == day_of_week,
            )
        )
        hours = result.scalar_one_or_none()
        if hours is None:
            hours = WorkingHours(user_email=user_email, day_of_week=day_of_week)
            self.session.add(hours)

        hours.start_time = start_time
        hours.end_time = end_time
        hours.timezone = timezone
        hours.is_active = is_active

        await self.session.commit()
        await self.session.refresh(hours)

        logger.info(f"Working hours updated for {user_email}, day {day_of_week}")
        self._changed()
        return hours

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()
