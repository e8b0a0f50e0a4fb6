"""Google Calendar push notifications"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from calendar_holds.api.deps import get_account_service
from calendar_holds.services import CalendarAccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar-webhook"])


@router.post("/webhook/{account_id}")
async def calendar_webhook(
    account_id: str,
    request: Request,
    x_goog_channel_id: Optional[str] = Header(None),
    x_goog_resource_state: Optional[str] = Header(None),
    accounts: CalendarAccountService = Depends(get_account_service),
):
    """
    Receive a change notification for a watched calendar

    Google retries anything that is not a 2xx, so unknown or stale
    channels are acknowledged and ignored.
    """
    account = await accounts.get(account_id)
    if account is None or not account.is_active:
        logger.warning(f"Webhook for unknown calendar account {account_id}")
        return {"status": "ignored"}

    if account.webhook_channel_id and x_goog_channel_id != account.webhook_channel_id:
        logger.warning(f"Webhook channel mismatch for {account.calendar_email}: {x_goog_channel_id}")
        return {"status": "ignored"}

    if x_goog_resource_state == "sync":
        logger.info(f"Push channel ready for {account.calendar_email}")
    elif x_goog_resource_state == "exists":
        request.app.state.availability_cache.clear()
        await accounts.touch_synced(account.id)
        logger.info(f"Calendar {account.calendar_email} changed, availability cache cleared")
    elif x_goog_resource_state == "not_exists":
        logger.info(f"Watched resource removed for {account.calendar_email}")
    else:
        logger.debug(f"Ignoring resource state {x_goog_resource_state} for {account.calendar_email}")

    return {"status": "ok"}
