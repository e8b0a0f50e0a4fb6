"""Tests for calendar_holds/services/conflict_checker.py"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from calendar_holds.core.errors import InvalidInterval, NotFound
from calendar_holds.integrations.providers import BusyPeriod, BusySourceRegistry
from calendar_holds.services import AvailabilityControlsService, ConflictChecker
from calendar_holds.services.conflict_checker import overlaps, validate_interval

from conftest import at


class StaticBusySource:
    name = "static"

    def __init__(self, periods):
        self.periods = periods
        self.calls = 0

    async def busy_periods(self, account, start, end):
        self.calls += 1
        return list(self.periods)


@pytest_asyncio.fixture
async def held(store, cal_a, inquiry_id):
    return await store.create(cal_a.calendar_email, at(10), at(10, 30), inquiry_id)


class TestOverlaps:
    def test_partial_overlap(self):
        assert overlaps(at(10), at(10, 30), at(10, 15), at(10, 45))
        assert overlaps(at(10, 15), at(10, 45), at(10), at(10, 30))

    def test_containment_counts(self):
        assert overlaps(at(9), at(12), at(10), at(11))
        assert overlaps(at(10), at(11), at(9), at(12))

    def test_abutting_intervals_do_not_overlap(self):
        assert not overlaps(at(10), at(10, 30), at(10, 30), at(11))
        assert not overlaps(at(10, 30), at(11), at(10), at(10, 30))

    def test_disjoint(self):
        assert not overlaps(at(8), at(9), at(10), at(11))


class TestValidateInterval:
    def test_zero_length_rejected(self):
        with pytest.raises(InvalidInterval):
            validate_interval(at(10), at(10))

    def test_inverted_rejected(self):
        with pytest.raises(InvalidInterval):
            validate_interval(at(11), at(10))

    def test_aware_values_normalized_to_naive_utc(self):
        plus_two = timezone(timedelta(hours=2))
        start, end = validate_interval(
            datetime(2026, 3, 2, 12, 0, tzinfo=plus_two),
            datetime(2026, 3, 2, 12, 30, tzinfo=plus_two),
        )
        assert start == at(10)
        assert end == at(10, 30)
        assert start.tzinfo is None


class TestIsAvailable:
    @pytest.mark.asyncio
    async def test_free_calendar(self, session, cal_a):
        checker = ConflictChecker(session)
        assert await checker.is_available(cal_a.calendar_email, at(10), at(11))

    @pytest.mark.asyncio
    async def test_resolves_by_id(self, session, cal_a):
        checker = ConflictChecker(session)
        assert await checker.is_available(str(cal_a.id), at(10), at(11))

    @pytest.mark.asyncio
    async def test_active_hold_blocks(self, session, cal_a, held):
        checker = ConflictChecker(session)
        assert not await checker.is_available(cal_a.calendar_email, at(10, 15), at(10, 45))
        assert not await checker.is_available(cal_a.calendar_email, at(9), at(12))

    @pytest.mark.asyncio
    async def test_abutting_hold_does_not_block(self, session, cal_a, held):
        checker = ConflictChecker(session)
        assert await checker.is_available(cal_a.calendar_email, at(10, 30), at(11))
        assert await checker.is_available(cal_a.calendar_email, at(9, 30), at(10))

    @pytest.mark.asyncio
    async def test_hold_on_other_calendar_ignored(self, session, cal_a, cal_b, held):
        checker = ConflictChecker(session)
        assert await checker.is_available(cal_b.calendar_email, at(10), at(10, 30))

    @pytest.mark.asyncio
    async def test_released_hold_no_longer_blocks(self, session, store, cal_a, held):
        await store.release(held.id)
        checker = ConflictChecker(session)
        assert await checker.is_available(cal_a.calendar_email, at(10), at(10, 30))

    @pytest.mark.asyncio
    async def test_external_busy_period_blocks(self, session, cal_a):
        source = StaticBusySource([BusyPeriod(at(14), at(15))])
        checker = ConflictChecker(session, source)
        assert not await checker.is_available(cal_a.calendar_email, at(14, 30), at(15, 30))
        assert await checker.is_available(cal_a.calendar_email, at(15), at(16))

    @pytest.mark.asyncio
    async def test_registry_dispatches_by_calendar_type(self, session, cal_a):
        google = StaticBusySource([BusyPeriod(at(14), at(15))])
        checker = ConflictChecker(session, BusySourceRegistry({"google": google}))

        # cal_a is a native calendar, so the Google overlay is never consulted
        assert await checker.is_available(cal_a.calendar_email, at(14), at(15))
        assert google.calls == 0

    @pytest.mark.asyncio
    async def test_blackout_blocks_owner_calendars(self, session, cal_a):
        controls = AvailabilityControlsService(session)
        await controls.create_blackout("owner@example.com", "Dentist", at(12), at(13))

        checker = ConflictChecker(session)
        assert not await checker.is_available(cal_a.calendar_email, at(12, 30), at(13, 30))

    @pytest.mark.asyncio
    async def test_unknown_calendar(self, session, cal_a):
        checker = ConflictChecker(session)
        with pytest.raises(NotFound):
            await checker.is_available("nobody@example.com", at(10), at(11))

    @pytest.mark.asyncio
    async def test_inactive_calendar(self, session, accounts, cal_a):
        await accounts.deactivate(cal_a.id)
        checker = ConflictChecker(session)
        with pytest.raises(NotFound):
            await checker.is_available(cal_a.calendar_email, at(10), at(11))

    @pytest.mark.asyncio
    async def test_invalid_interval(self, session, cal_a):
        checker = ConflictChecker(session)
        with pytest.raises(InvalidInterval):
            await checker.is_available(cal_a.calendar_email, at(10), at(10))


class TestFindConflicts:
    @pytest.mark.asyncio
    async def test_reports_every_source(self, session, cal_a, held):
        controls = AvailabilityControlsService(session)
        await controls.create_blackout("owner@example.com", "Lunch", at(10, 20), at(11))
        source = StaticBusySource([BusyPeriod(at(10, 40), at(11, 30))])

        checker = ConflictChecker(session, source)
        conflicts = await checker.find_conflicts(cal_a, at(10), at(12))

        assert sorted(c.source for c in conflicts) == ["blackout", "calendar", "hold"]

    @pytest.mark.asyncio
    async def test_stop_at_first_skips_external_lookup(self, session, cal_a, held):
        source = StaticBusySource([])
        checker = ConflictChecker(session, source)
        conflicts = await checker.find_conflicts(cal_a, at(10), at(11), stop_at_first=True)

        assert [c.source for c in conflicts] == ["hold"]
        assert source.calls == 0
