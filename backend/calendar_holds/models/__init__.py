from calendar_holds.models.calendar_account import CalendarAccount
from calendar_holds.models.provisional_hold import ProvisionalHold, HoldStatus
from calendar_holds.models.availability import BlackoutPeriod, WorkingHours

__all__ = ["CalendarAccount", "ProvisionalHold", "HoldStatus", "BlackoutPeriod", "WorkingHours"]
