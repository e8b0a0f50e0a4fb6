from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from twilio.rest import Client

from calendar_holds.core.config import Settings
from calendar_holds.models import ProvisionalHold

logger = logging.getLogger(__name__)


class HoldNotifier:
    """Fire-and-forget SMS when a hold is confirmed or released.

    Sending happens in a worker thread on a background task. A failed
    send is logged and never touches the hold.
    """

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.from_number = settings.twilio_phone_number
        self.to_number = settings.hold_notify_sms_to
        self.client = client
        if self.client is None and settings.twilio_configured:
            self.client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.client and self.from_number and self.to_number)

    def notify(self, hold: ProvisionalHold, event: str) -> Optional[asyncio.Task]:
        if not self.enabled:
            logger.debug(f"SMS notifications disabled, skipping {event} for hold {hold.id}")
            return None

        message = format_hold_message(hold, event)
        task = asyncio.create_task(self._send(message, hold_id=str(hold.id), event=event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _send(self, body: str, hold_id: str, event: str) -> None:
        try:
            await asyncio.to_thread(self.send_sms, self.to_number, body)
            logger.info(f"Sent {event} notification for hold {hold_id}")
        except Exception as e:
            logger.warning(f"Failed to send {event} notification for hold {hold_id}: {e}")

    def send_sms(self, to: str, message: str):
        """Send an SMS to the specified phone number"""
        return self.client.messages.create(
            to=to,
            from_=self.from_number,
            body=message
        )

    async def drain(self) -> None:
        """Wait for in-flight notifications, used on shutdown"""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def format_hold_message(hold: ProvisionalHold, event: str) -> str:
    slot = f"{hold.slot_start:%Y-%m-%d %H:%M}-{hold.slot_end:%H:%M} UTC"
    if event == "confirmed":
        return f"Booking confirmed on {hold.calendar_email} for {slot} (inquiry {hold.booking_inquiry_id})."
    return f"Hold {event} on {hold.calendar_email} for {slot} (inquiry {hold.booking_inquiry_id})."
