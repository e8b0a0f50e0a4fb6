"""Tests for calendar_holds/services/hold_store.py"""

import asyncio
import itertools
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from calendar_holds.core.errors import (
    Busy,
    InvalidInterval,
    InvalidStateTransition,
    NotFound,
    SlotConflict,
)
from calendar_holds.integrations.providers import BusyPeriod
from calendar_holds.models import HoldStatus, ProvisionalHold
from calendar_holds.services import HoldStore

from conftest import at


async def active_intervals(session, account_id):
    result = await session.execute(
        select(ProvisionalHold.slot_start, ProvisionalHold.slot_end).where(
            ProvisionalHold.calendar_account_id == account_id,
            ProvisionalHold.status == HoldStatus.ACTIVE.value,
        )
    )
    return [(row.slot_start, row.slot_end) for row in result]


def assert_pairwise_disjoint(intervals):
    for (a0, a1), (b0, b1) in itertools.combinations(intervals, 2):
        assert not (a0 < b1 and b0 < a1), f"{(a0, a1)} overlaps {(b0, b1)}"


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_active_hold(self, store, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.calendar_email, at(10), at(10, 30), inquiry_id, metadata={"source": "form"})

        assert hold.status == HoldStatus.ACTIVE.value
        assert hold.calendar_account_id == cal_a.id
        assert hold.calendar_email == "cal-a@example.com"
        assert hold.booking_inquiry_id == inquiry_id
        assert hold.created_at == clock.now
        assert (hold.expires_at - hold.created_at).total_seconds() == 30 * 60
        assert hold.hold_metadata == {"source": "form"}

    @pytest.mark.asyncio
    async def test_custom_duration(self, store, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(10, 30), inquiry_id, hold_duration_minutes=5)
        assert (hold.expires_at - clock.now).total_seconds() == 5 * 60

    @pytest.mark.asyncio
    async def test_overlapping_scenario(self, store, cal_a, inquiry_id):
        """[10:00,10:30) held; [10:15,10:45) conflicts; [10:30,11:00) abuts and succeeds"""
        await store.create("cal-a@example.com", at(10), at(10, 30), inquiry_id, hold_duration_minutes=30)

        with pytest.raises(SlotConflict):
            await store.create("cal-a@example.com", at(10, 15), at(10, 45), uuid.uuid4())

        third = await store.create("cal-a@example.com", at(10, 30), at(11), uuid.uuid4())
        assert third.status == HoldStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_containment_conflicts(self, store, cal_a, inquiry_id):
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        with pytest.raises(SlotConflict):
            await store.create(cal_a.id, at(10, 15), at(10, 45), uuid.uuid4())
        with pytest.raises(SlotConflict):
            await store.create(cal_a.id, at(9), at(12), uuid.uuid4())

    @pytest.mark.asyncio
    async def test_same_slot_on_other_calendar(self, store, cal_a, cal_b, inquiry_id):
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        hold = await store.create(cal_b.id, at(10), at(11), inquiry_id)
        assert hold.calendar_account_id == cal_b.id

    @pytest.mark.asyncio
    async def test_conflict_leaves_no_partial_write(self, store, session, cal_a, inquiry_id):
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        with pytest.raises(SlotConflict):
            await store.create(cal_a.id, at(10, 30), at(11, 30), inquiry_id)

        assert await active_intervals(session, cal_a.id) == [(at(10), at(11))]

    @pytest.mark.asyncio
    async def test_invalid_interval(self, store, cal_a, inquiry_id):
        with pytest.raises(InvalidInterval):
            await store.create(cal_a.id, at(10), at(10), inquiry_id)
        with pytest.raises(InvalidInterval):
            await store.create(cal_a.id, at(11), at(10), inquiry_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, -5])
    async def test_non_positive_duration(self, store, cal_a, inquiry_id, minutes):
        with pytest.raises(InvalidInterval):
            await store.create(cal_a.id, at(10), at(11), inquiry_id, hold_duration_minutes=minutes)

    @pytest.mark.asyncio
    async def test_unknown_calendar(self, store, inquiry_id):
        with pytest.raises(NotFound):
            await store.create("missing@example.com", at(10), at(11), inquiry_id)

    @pytest.mark.asyncio
    async def test_inactive_calendar(self, store, accounts, cal_a, inquiry_id):
        await accounts.deactivate(cal_a.id)
        with pytest.raises(NotFound):
            await store.create(cal_a.id, at(10), at(11), inquiry_id)

    @pytest.mark.asyncio
    async def test_external_busy_period_conflicts(self, session, locks, clock, cal_a, inquiry_id):
        class Busy2pm:
            name = "static"

            async def busy_periods(self, account, start, end):
                return [BusyPeriod(at(14), at(15))]

        store = HoldStore(session, locks, busy_source=Busy2pm(), clock=clock)
        with pytest.raises(SlotConflict):
            await store.create(cal_a.id, at(14, 30), at(15, 30), inquiry_id)
        assert (await store.create(cal_a.id, at(15), at(16), inquiry_id)).slot_start == at(15)

    @pytest.mark.asyncio
    async def test_lapsed_hold_does_not_block(self, store, session, cal_a, clock, inquiry_id):
        first = await store.create(cal_a.id, at(10), at(11), inquiry_id, hold_duration_minutes=30)
        clock.advance(minutes=30)

        second = await store.create(cal_a.id, at(10), at(11), uuid.uuid4())

        await session.refresh(first)
        assert first.status == HoldStatus.EXPIRED.value
        assert first.released_at is None
        assert second.status == HoldStatus.ACTIVE.value
        assert await active_intervals(session, cal_a.id) == [(at(10), at(11))]

    @pytest.mark.asyncio
    async def test_on_change_called(self, session, locks, clock, cal_a, inquiry_id):
        calls = []
        store = HoldStore(session, locks, clock=clock, on_change=lambda: calls.append(1))
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        await store.release(hold.id)
        assert len(calls) == 2


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_identical_creates_exactly_one_wins(self, session_factory, locks, clock, cal_a):
        async def attempt():
            async with session_factory() as session:
                store = HoldStore(session, locks, clock=clock)
                try:
                    await store.create(cal_a.id, at(10), at(11), uuid.uuid4())
                    return "ok"
                except (SlotConflict, Busy) as e:
                    return type(e).__name__

        results = await asyncio.gather(*(attempt() for _ in range(5)))

        assert results.count("ok") == 1
        assert set(results) - {"ok"} <= {"SlotConflict", "Busy"}
        async with session_factory() as session:
            assert await active_intervals(session, cal_a.id) == [(at(10), at(11))]

    @pytest.mark.asyncio
    async def test_lock_timeout_raises_busy(self, session, clock, cal_a, inquiry_id):
        from calendar_holds.core.locks import KeyedLocks

        locks = KeyedLocks(timeout_seconds=0.05)
        store = HoldStore(session, locks, clock=clock)

        async with locks.hold(str(cal_a.id)):
            with pytest.raises(Busy):
                await store.create(cal_a.id, at(10), at(11), inquiry_id)

        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        assert hold.status == HoldStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_invariant_after_mixed_operations(self, store, session, cal_a, clock):
        requests = [
            (at(9), at(10)), (at(9, 30), at(10, 30)), (at(10), at(11)),
            (at(10, 45), at(11, 15)), (at(11), at(12)), (at(8), at(13)),
        ]
        created = []
        for start, end in requests:
            try:
                created.append(await store.create(cal_a.id, start, end, uuid.uuid4()))
            except SlotConflict:
                pass
        await store.release(created[0].id)
        created.append(await store.create(cal_a.id, at(9, 15), at(9, 45), uuid.uuid4()))
        clock.advance(minutes=31)
        await store.expire_due()
        for start, end in requests:
            try:
                await store.create(cal_a.id, start, end, uuid.uuid4())
            except SlotConflict:
                pass

        assert_pairwise_disjoint(await active_intervals(session, cal_a.id))


def failing_commit(error):
    async def commit():
        raise error
    return commit


class TestDatabaseErrors:
    """The exclusion constraint and lock_timeout only fire on PostgreSQL;
    their errors are raised from commit here instead."""

    @pytest.mark.asyncio
    async def test_constraint_violation_is_slot_conflict(self, store, session, cal_a, inquiry_id, monkeypatch):
        error = IntegrityError(
            "INSERT INTO provisional_holds", {}, Exception("violates exclusion constraint")
        )
        monkeypatch.setattr(session, "commit", failing_commit(error))

        with pytest.raises(SlotConflict) as exc_info:
            await store.create(cal_a.id, at(10), at(11), inquiry_id)

        assert exc_info.value.__cause__ is error
        monkeypatch.undo()
        assert await active_intervals(session, cal_a.id) == []

    @pytest.mark.asyncio
    async def test_lock_timeout_is_busy(self, store, session, cal_a, inquiry_id, monkeypatch):
        error = OperationalError(
            "SELECT ... FOR UPDATE", {}, Exception("canceling statement due to lock timeout")
        )
        monkeypatch.setattr(session, "commit", failing_commit(error))

        with pytest.raises(Busy) as exc_info:
            await store.create(cal_a.id, at(10), at(11), inquiry_id)

        assert exc_info.value.retry_after_seconds == 1
        monkeypatch.undo()
        assert await active_intervals(session, cal_a.id) == []

        # the session is usable again after the rollback
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        assert hold.status == HoldStatus.ACTIVE.value


class TestCreateAcrossCalendars:
    @pytest.mark.asyncio
    async def test_holds_every_active_calendar(self, store, cal_a, cal_b, inquiry_id):
        holds = await store.create_across_calendars(at(10), at(11), inquiry_id)

        assert {h.calendar_account_id for h in holds} == {cal_a.id, cal_b.id}
        group_ids = {h.hold_metadata["group_id"] for h in holds}
        assert len(group_ids) == 1

    @pytest.mark.asyncio
    async def test_any_conflict_rolls_back_all(self, store, session, cal_a, cal_b, inquiry_id):
        await store.create(cal_b.id, at(10, 30), at(11, 30), inquiry_id)

        with pytest.raises(SlotConflict):
            await store.create_across_calendars(at(10), at(11), uuid.uuid4())

        assert await active_intervals(session, cal_a.id) == []
        assert await active_intervals(session, cal_b.id) == [(at(10, 30), at(11, 30))]

    @pytest.mark.asyncio
    async def test_no_calendars(self, store, inquiry_id):
        with pytest.raises(NotFound):
            await store.create_across_calendars(at(10), at(11), inquiry_id)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_confirm(self, store, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        clock.advance(minutes=5)

        confirmed = await store.confirm(hold.id, "evt_123")

        assert confirmed.status == HoldStatus.CONFIRMED.value
        assert confirmed.confirmed_event_id == "evt_123"
        assert confirmed.confirmed_at == clock.now

    @pytest.mark.asyncio
    async def test_release(self, store, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        released = await store.release(str(hold.id))

        assert released.status == HoldStatus.RELEASED.value
        assert released.released_at == clock.now

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first", ["confirm", "release"])
    @pytest.mark.parametrize("second", ["confirm", "release"])
    async def test_terminal_states_are_immutable(self, store, session, cal_a, inquiry_id, first, second):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        if first == "confirm":
            await store.confirm(hold.id, "evt_1")
        else:
            await store.release(hold.id)
        before = (hold.status, hold.confirmed_event_id, hold.released_at, hold.confirmed_at)

        with pytest.raises(InvalidStateTransition) as exc_info:
            if second == "confirm":
                await store.confirm(hold.id, "evt_2")
            else:
                await store.release(hold.id)

        await session.refresh(hold)
        assert exc_info.value.current_status == before[0]
        assert (hold.status, hold.confirmed_event_id, hold.released_at, hold.confirmed_at) == before

    @pytest.mark.asyncio
    async def test_expired_hold_cannot_be_confirmed(self, store, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        clock.advance(minutes=31)
        await store.expire_due()

        with pytest.raises(InvalidStateTransition):
            await store.confirm(hold.id, "evt_1")

    @pytest.mark.asyncio
    async def test_lapsed_but_unswept_hold_cannot_be_confirmed(self, store, session, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        clock.advance(minutes=30)

        with pytest.raises(InvalidStateTransition) as exc_info:
            await store.confirm(hold.id, "evt_1")

        assert exc_info.value.current_status == HoldStatus.EXPIRED.value
        await session.refresh(hold)
        assert hold.status == HoldStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_unknown_hold(self, store):
        with pytest.raises(NotFound):
            await store.confirm(uuid.uuid4(), "evt_1")
        with pytest.raises(NotFound):
            await store.release("not-a-uuid")

    @pytest.mark.asyncio
    async def test_ensure_active(self, store, cal_a, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        assert (await store.ensure_active(hold.id)).id == hold.id

        await store.release(hold.id)
        with pytest.raises(InvalidStateTransition):
            await store.ensure_active(hold.id)


class TestExpireDue:
    @pytest.mark.asyncio
    async def test_expires_only_due_active_holds(self, store, cal_a, cal_b, clock, inquiry_id):
        due = await store.create(cal_a.id, at(10), at(11), inquiry_id, hold_duration_minutes=10)
        later = await store.create(cal_b.id, at(10), at(11), inquiry_id, hold_duration_minutes=60)
        confirmed = await store.create(cal_a.id, at(12), at(13), inquiry_id, hold_duration_minutes=10)
        await store.confirm(confirmed.id, "evt_1")

        clock.advance(minutes=10)
        assert await store.expire_due() == 1

        assert due.status == HoldStatus.EXPIRED.value
        assert due.released_at is None
        assert later.status == HoldStatus.ACTIVE.value
        assert confirmed.status == HoldStatus.CONFIRMED.value

    @pytest.mark.asyncio
    async def test_idempotent(self, store, cal_a, clock, inquiry_id):
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        clock.advance(minutes=45)

        assert await store.expire_due(clock.now) == 1
        assert await store.expire_due(clock.now) == 0
        clock.advance(minutes=10)
        assert await store.expire_due(clock.now) == 0

    @pytest.mark.asyncio
    async def test_released_holds_untouched(self, store, session, cal_a, clock, inquiry_id):
        hold = await store.create(cal_a.id, at(10), at(11), inquiry_id)
        await store.release(hold.id)
        released_at = hold.released_at

        clock.advance(hours=1)
        assert await store.expire_due() == 0

        await session.refresh(hold)
        assert hold.status == HoldStatus.RELEASED.value
        assert hold.released_at == released_at


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_for_inquiry(self, store, cal_a, cal_b, inquiry_id):
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        await store.create(cal_b.id, at(10), at(11), inquiry_id)
        await store.create(cal_a.id, at(12), at(13), uuid.uuid4())

        holds = await store.list_for_inquiry(inquiry_id)
        assert len(holds) == 2
        assert await store.list_for_inquiry("garbage") == []

    @pytest.mark.asyncio
    async def test_list_active_by_calendar(self, store, cal_a, cal_b, inquiry_id):
        first = await store.create(cal_a.id, at(12), at(13), inquiry_id)
        await store.create(cal_a.id, at(10), at(11), inquiry_id)
        await store.create(cal_b.id, at(10), at(11), inquiry_id)
        await store.release(first.id)

        holds = await store.list_active("cal-a@example.com")
        assert [h.slot_start for h in holds] == [at(10)]
        assert len(await store.list_active()) == 2
