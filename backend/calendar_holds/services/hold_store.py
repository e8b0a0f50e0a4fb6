"""Provisional hold lifecycle.

::

            create()                 confirm()
     (none) --------> active ------------------> confirmed
                        |   \\
              release()  \\   expire_due()
                        v    v
                   released   expired

``confirmed``, ``released`` and ``expired`` are terminal. ``create`` runs
the conflict re-check and the insert inside one critical section per
calendar account, so two callers can never both pass the check for
overlapping intervals.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.clock import Clock, to_utc_naive, utcnow
from calendar_holds.core.errors import (
    Busy,
    HoldServiceError,
    InvalidInterval,
    InvalidStateTransition,
    NotFound,
    SlotConflict,
)
from calendar_holds.core.locks import KeyedLocks
from calendar_holds.integrations.providers.base import BusySource
from calendar_holds.models import CalendarAccount, HoldStatus, ProvisionalHold
from calendar_holds.services.calendar_accounts import parse_uuid, resolve_account
from calendar_holds.services.conflict_checker import ConflictChecker, validate_interval
from calendar_holds.services.notifications import HoldNotifier

logger = logging.getLogger(__name__)


class HoldStore:
    """Hold operations over one session.

    ``locks`` guards ``create`` and must be the instance shared by every
    writer in the process; expiry does not need it.
    """

    def __init__(
        self,
        session: AsyncSession,
        locks: Optional[KeyedLocks] = None,
        busy_source: Optional[BusySource] = None,
        notifier: Optional[HoldNotifier] = None,
        clock: Clock = utcnow,
        default_duration_minutes: int = 30,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.locks = locks or KeyedLocks(timeout_seconds=2.0)
        self.checker = ConflictChecker(session, busy_source)
        self.notifier = notifier
        self.clock = clock
        self.default_duration_minutes = default_duration_minutes
        self.on_change = on_change

    # ==================== QUERIES ====================

    async def get(self, hold_id: Any) -> Optional[ProvisionalHold]:
        """Get hold by ID"""
        h_uuid = parse_uuid(hold_id)
        if h_uuid is None:
            return None

        result = await self.session.execute(
            select(ProvisionalHold).where(ProvisionalHold.id == h_uuid)
        )
        return result.scalar_one_or_none()

    async def list_for_inquiry(self, booking_inquiry_id: Any) -> List[ProvisionalHold]:
        """All holds placed for one booking inquiry, newest first"""
        i_uuid = parse_uuid(booking_inquiry_id)
        if i_uuid is None:
            return []

        result = await self.session.execute(
            select(ProvisionalHold)
            .where(ProvisionalHold.booking_inquiry_id == i_uuid)
            .order_by(ProvisionalHold.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_active(self, calendar: Any = None) -> List[ProvisionalHold]:
        query = select(ProvisionalHold).where(ProvisionalHold.status == HoldStatus.ACTIVE.value)
        if calendar is not None:
            account = await resolve_account(self.session, calendar, active_only=False)
            query = query.where(ProvisionalHold.calendar_account_id == account.id)

        result = await self.session.execute(query.order_by(ProvisionalHold.slot_start))
        return list(result.scalars().all())

    # ==================== CREATE ====================

    async def create(
        self,
        calendar: Any,
        start: datetime,
        end: datetime,
        owner_reference: Any,
        hold_duration_minutes: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProvisionalHold:
        """Hold ``[start, end)`` on one calendar for ``owner_reference``.

        Raises:
            InvalidInterval: empty/inverted interval or non-positive duration
            NotFound: calendar is unknown or inactive
            SlotConflict: the interval overlaps an active hold or busy period
            Busy: the calendar's lock could not be acquired in time
        """
        start, end = validate_interval(start, end)
        duration = self._hold_duration(hold_duration_minutes)
        owner = _owner_uuid(owner_reference)
        account = await resolve_account(self.session, calendar)

        holds = await self._create_holds([account], start, end, owner, duration, metadata or {})
        return holds[0]

    async def create_across_calendars(
        self,
        start: datetime,
        end: datetime,
        owner_reference: Any,
        hold_duration_minutes: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> List[ProvisionalHold]:
        """Hold the same interval on every active calendar, all or nothing."""
        start, end = validate_interval(start, end)
        duration = self._hold_duration(hold_duration_minutes)
        owner = _owner_uuid(owner_reference)

        result = await self.session.execute(
            select(CalendarAccount).where(CalendarAccount.is_active.is_(True))
        )
        accounts = list(result.scalars().all())
        if not accounts:
            raise NotFound("No active calendar accounts")

        group_metadata = {**(metadata or {}), "group_id": str(uuid.uuid4())}
        return await self._create_holds(accounts, start, end, owner, duration, group_metadata)

    async def _create_holds(
        self,
        accounts: List[CalendarAccount],
        start: datetime,
        end: datetime,
        owner: uuid.UUID,
        duration: int,
        metadata: dict[str, Any],
    ) -> List[ProvisionalHold]:
        accounts = sorted(accounts, key=lambda a: str(a.id))

        # Provider busy times are read before any row lock: refreshing a
        # provider token writes to the account row we are about to lock.
        for account in accounts:
            if await self.checker.external_conflicts(account, start, end):
                raise SlotConflict(_not_free(account, start, end))

        async with self.locks.hold_many(str(a.id) for a in accounts):
            try:
                await self._lock_account_rows(accounts)
                now = self.clock()

                holds = []
                for account in accounts:
                    # Lapsed holds must not block, and must not stay active once overlapped.
                    await self._expire_due_on(account, now)

                    conflicts = await self.checker.find_conflicts(
                        account, start, end, stop_at_first=True, include_external=False
                    )
                    if conflicts:
                        raise SlotConflict(_not_free(account, start, end))

                    holds.append(ProvisionalHold(
                        id=uuid.uuid4(),
                        booking_inquiry_id=owner,
                        calendar_account_id=account.id,
                        calendar_email=account.calendar_email,
                        slot_start=start,
                        slot_end=end,
                        status=HoldStatus.ACTIVE.value,
                        created_at=now,
                        expires_at=now + timedelta(minutes=duration),
                        hold_metadata=dict(metadata),
                    ))

                self.session.add_all(holds)
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                logger.warning(f"Hold insert rejected by the database: {e.orig}")
                raise SlotConflict("The requested slot was taken by a concurrent request") from e
            except OperationalError as e:
                await self.session.rollback()
                logger.warning(f"Database lock not acquired for hold create: {e.orig}")
                raise Busy("Calendar is busy, try again shortly") from e
            except HoldServiceError:
                await self.session.rollback()
                raise

        for hold in holds:
            logger.info(
                f"Created hold {hold.id} on {hold.calendar_email} "
                f"[{start.isoformat()}, {end.isoformat()}) until {hold.expires_at.isoformat()}"
            )
        self._changed()
        return holds

    async def _lock_account_rows(self, accounts: Iterable[CalendarAccount]) -> None:
        """Row-lock the accounts so other processes queue behind us.

        ``FOR UPDATE`` is a no-op on SQLite, where the in-process lock is
        the only guard.
        """
        if self.session.get_bind().dialect.name == "postgresql":
            timeout_ms = int(self.locks.timeout_seconds * 1000)
            await self.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

        for account in accounts:
            result = await self.session.execute(
                select(CalendarAccount)
                .where(CalendarAccount.id == account.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            locked = result.scalar_one_or_none()
            if locked is None or not locked.is_active:
                raise NotFound(f"Calendar {account.calendar_email} not found")

    # ==================== TRANSITIONS ====================

    async def ensure_active(self, hold_id: Any) -> ProvisionalHold:
        """Fail early, before touching the calendar, if the hold cannot be confirmed"""
        hold = await self.get(hold_id)
        if hold is None:
            raise NotFound(f"Hold {hold_id} not found")
        self._require_active(hold, self.clock(), HoldStatus.CONFIRMED)
        return hold

    async def confirm(self, hold_id: Any, confirmed_event_reference: Optional[str]) -> ProvisionalHold:
        """active -> confirmed, recording the calendar event that now backs the hold"""
        hold = await self._transition(hold_id, HoldStatus.CONFIRMED, confirmed_event_reference)
        if self.notifier:
            self.notifier.notify(hold, "confirmed")
        return hold

    async def release(self, hold_id: Any) -> ProvisionalHold:
        """active -> released"""
        hold = await self._transition(hold_id, HoldStatus.RELEASED)
        if self.notifier:
            self.notifier.notify(hold, "released")
        return hold

    async def _transition(
        self,
        hold_id: Any,
        target: HoldStatus,
        confirmed_event_reference: Optional[str] = None,
    ) -> ProvisionalHold:
        try:
            hold = await self._get_for_update(hold_id)
            now = self.clock()
            self._require_active(hold, now, target)

            hold.status = target.value
            if target is HoldStatus.CONFIRMED:
                hold.confirmed_at = now
                hold.confirmed_event_id = confirmed_event_reference
            else:
                hold.released_at = now

            await self.session.commit()
        except HoldServiceError:
            await self.session.rollback()
            raise

        logger.info(f"Hold {hold.id} on {hold.calendar_email} -> {target.value}")
        self._changed()
        return hold

    async def _get_for_update(self, hold_id: Any) -> ProvisionalHold:
        h_uuid = parse_uuid(hold_id)
        if h_uuid is None:
            raise NotFound(f"Hold {hold_id} not found")

        result = await self.session.execute(
            select(ProvisionalHold)
            .where(ProvisionalHold.id == h_uuid)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        hold = result.scalar_one_or_none()
        if hold is None:
            raise NotFound(f"Hold {hold_id} not found")
        return hold

    def _require_active(self, hold: ProvisionalHold, now: datetime, target: HoldStatus) -> None:
        if hold.hold_status.is_terminal:
            raise InvalidStateTransition(
                f"Hold {hold.id} is {hold.status}; cannot move to {target.value}",
                current_status=hold.status,
            )
        if hold.expires_at <= now:
            # Lapsed but not yet swept; the sweeper owns the move to expired.
            raise InvalidStateTransition(
                f"Hold {hold.id} expired at {hold.expires_at.isoformat()}; cannot move to {target.value}",
                current_status=HoldStatus.EXPIRED.value,
            )

    # ==================== EXPIRY ====================

    async def expire_due(self, now: Optional[datetime] = None) -> int:
        """Move every active hold with ``expires_at <= now`` to expired.

        Idempotent: a second call with the same (or an earlier) ``now``
        finds nothing left to expire.
        """
        now = to_utc_naive(now) if now is not None else self.clock()
        try:
            result = await self.session.execute(
                select(ProvisionalHold)
                .where(
                    ProvisionalHold.status == HoldStatus.ACTIVE.value,
                    ProvisionalHold.expires_at <= now,
                )
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            due = list(result.scalars().all())
            for hold in due:
                hold.status = HoldStatus.EXPIRED.value
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if due:
            logger.info(f"Expired {len(due)} provisional hold(s) due by {now.isoformat()}")
            self._changed()
        return len(due)

    async def _expire_due_on(self, account: CalendarAccount, now: datetime) -> int:
        result = await self.session.execute(
            select(ProvisionalHold).where(
                ProvisionalHold.calendar_account_id == account.id,
                ProvisionalHold.status == HoldStatus.ACTIVE.value,
                ProvisionalHold.expires_at <= now,
            )
        )
        due = list(result.scalars().all())
        for hold in due:
            hold.status = HoldStatus.EXPIRED.value
        if due:
            await self.session.flush()
        return len(due)

    # ==================== HELPERS ====================

    def _hold_duration(self, minutes: Optional[int]) -> int:
        duration = self.default_duration_minutes if minutes is None else minutes
        if duration <= 0:
            raise InvalidInterval(f"Hold duration must be positive, got {duration} minute(s)")
        return duration

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()


def _not_free(account: CalendarAccount, start: datetime, end: datetime) -> str:
    return f"{account.calendar_email} is not free between {start.isoformat()} and {end.isoformat()}"


def _owner_uuid(owner_reference: Any) -> uuid.UUID:
    owner = parse_uuid(owner_reference)
    if owner is None:
        raise ValueError(f"Booking inquiry reference {owner_reference!r} is not a UUID")
    return owner
