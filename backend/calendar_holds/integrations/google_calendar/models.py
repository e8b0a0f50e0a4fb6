"""Calendar event data models"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional


def _as_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass
class CalendarEvent:
    """Represents a confirmed booking event for Google Calendar"""

    title: str                      # "Consultation - Jane Smith"
    start_time: datetime            # Held slot start (naive UTC)
    end_time: datetime              # Held slot end
    booking_inquiry_id: str         # Link back to the inquiry
    hold_id: str                    # Link back to our hold
    description: str = ""
    attendees: List[str] = field(default_factory=list)
    location: Optional[str] = None

    def to_google_event(self) -> dict[str, Any]:
        """Convert to Google Calendar API event format"""
        body: dict[str, Any] = {
            "summary": self.title,
            "description": f"{self.description}\nBooking Inquiry ID: {self.booking_inquiry_id}".strip(),
            "start": {"dateTime": _as_utc_iso(self.start_time)},
            "end": {"dateTime": _as_utc_iso(self.end_time)},
            "status": "confirmed",
            "attendees": [{"email": email} for email in self.attendees],
            "extendedProperties": {
                "private": {
                    "type": "confirmed_booking",
                    "booking_inquiry_id": self.booking_inquiry_id,
                    "hold_id": self.hold_id,
                }
            },
        }
        if self.location:
            body["location"] = self.location
        return body
