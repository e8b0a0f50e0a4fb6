"""Google Calendar OAuth endpoints"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from calendar_holds.api.deps import get_account_service
from calendar_holds.core.errors import CalendarProviderError
from calendar_holds.services import CalendarAccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google-calendar", tags=["google-calendar"])


class GoogleCalendarStartRequest(BaseModel):
    user_email: str


class GoogleCalendarStartResponse(BaseModel):
    authorization_url: str


class GoogleCalendarAuthSuccess(BaseModel):
    success: bool
    message: str
    account_id: Optional[str] = None


class DisconnectRequest(BaseModel):
    account_id: str  # account id or calendar email


@router.post("/start", response_model=GoogleCalendarStartResponse)
async def start_oauth_flow(body: GoogleCalendarStartRequest, request: Request) -> GoogleCalendarStartResponse:
    """
    Initiate Google Calendar OAuth flow

    Returns authorization URL for user to visit
    """
    oauth = request.app.state.google_oauth
    if not oauth.configured:
        raise HTTPException(status_code=503, detail="Google Calendar OAuth is not configured")

    auth_url = oauth.get_authorization_url(state=body.user_email)
    logger.info(f"Generated OAuth URL for {body.user_email}")
    return GoogleCalendarStartResponse(authorization_url=auth_url)


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),  # owner email passed as state
    accounts: CalendarAccountService = Depends(get_account_service),
) -> GoogleCalendarAuthSuccess:
    """
    Google OAuth callback endpoint

    Exchanges authorization code for tokens and registers the calendar
    """
    user_email = state
    app_state = request.app.state
    oauth = app_state.google_oauth

    access_token, refresh_token, expires_in = await oauth.exchange_code_for_tokens(code)
    if not refresh_token:
        logger.error(f"No refresh token received for {user_email}")
        raise HTTPException(status_code=400, detail="Google did not return a refresh token")

    calendar = await app_state.google_client.get_calendar(access_token, "primary")
    calendar_email = calendar.get("id") or user_email

    expires_at = app_state.clock() + timedelta(seconds=expires_in)
    account = await accounts.connect(
        user_email,
        calendar_email,
        credentials={
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at.isoformat(),
        },
        calendar_type="google",
    )

    # Push notifications are optional; the calendar works without them.
    webhook_url = app_state.settings.calendar_webhook_url
    if webhook_url:
        try:
            await _subscribe(request, accounts, account, access_token, webhook_url)
        except CalendarProviderError as e:
            logger.warning(f"Could not subscribe {calendar_email} to push notifications: {e}")

    logger.info(f"Successfully connected Google Calendar {calendar_email} for {user_email}")

    return GoogleCalendarAuthSuccess(
        success=True,
        message="Google Calendar connected successfully",
        account_id=str(account.id),
    )


@router.post("/disconnect")
async def disconnect_google_calendar(
    body: DisconnectRequest,
    accounts: CalendarAccountService = Depends(get_account_service),
) -> GoogleCalendarAuthSuccess:
    """
    Disconnect a Google Calendar

    Clears all stored credentials; existing holds keep their history
    """
    account = await accounts.deactivate(body.account_id)

    logger.info(f"Disconnected Google Calendar {account.calendar_email}")
    return GoogleCalendarAuthSuccess(
        success=True,
        message="Google Calendar disconnected successfully",
        account_id=str(account.id),
    )


async def _subscribe(request: Request, accounts, account, access_token: str, webhook_url: str) -> None:
    channel_id = str(uuid.uuid4())
    address = f"{webhook_url.rstrip('/')}/calendar/webhook/{account.id}"
    channel = await request.app.state.google_client.watch(
        access_token, account.calendar_email, channel_id, address
    )

    expires_at = None
    if channel.get("expiration"):
        expires_at = datetime.fromtimestamp(int(channel["expiration"]) / 1000, tz=timezone.utc).replace(tzinfo=None)
    await accounts.record_watch(account, channel_id, channel.get("resourceId"), expires_at)
    logger.info(f"Subscribed {account.calendar_email} to push notifications (channel {channel_id})")
