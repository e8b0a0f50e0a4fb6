"""Typed failures raised by the hold services.

Every error carries an HTTP status so the API layer can translate it
without a lookup table.
"""

from __future__ import annotations

from typing import Optional


class HoldServiceError(Exception):
    status_code = 500
    code = "hold_service_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(HoldServiceError):
    status_code = 404
    code = "not_found"


class InvalidInterval(HoldServiceError):
    status_code = 400
    code = "invalid_interval"


class SlotConflict(HoldServiceError):
    status_code = 409
    code = "slot_conflict"


class AccountConflict(HoldServiceError):
    status_code = 409
    code = "account_conflict"


class InvalidStateTransition(HoldServiceError):
    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class Busy(HoldServiceError):
    status_code = 503
    code = "busy"

    def __init__(self, message: str, retry_after_seconds: int = 1):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class CalendarProviderError(HoldServiceError):
    """An external calendar API call failed."""

    status_code = 502
    code = "calendar_provider_error"

    def __init__(self, message: str, provider_id: Optional[str] = None):
        super().__init__(message)
        self.provider_id = provider_id
