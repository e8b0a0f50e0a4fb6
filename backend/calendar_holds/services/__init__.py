from calendar_holds.services.calendar_accounts import CalendarAccountService
from calendar_holds.services.conflict_checker import ConflictChecker
from calendar_holds.services.hold_store import HoldStore
from calendar_holds.services.hold_sweeper import HoldExpirySweeper
from calendar_holds.services.availability import AvailabilityCache, AvailabilityService
from calendar_holds.services.availability_controls import AvailabilityControlsService
from calendar_holds.services.notifications import HoldNotifier

__all__ = [
    "AvailabilityCache",
    "AvailabilityControlsService",
    "AvailabilityService",
    "CalendarAccountService",
    "ConflictChecker",
    "HoldExpirySweeper",
    "HoldNotifier",
    "HoldStore",
]
