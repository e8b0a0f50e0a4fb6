from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from calendar_holds.api.deps import get_account_service, get_conflict_checker, get_hold_store
from calendar_holds.core.errors import CalendarProviderError
from calendar_holds.integrations.google_calendar.models import CalendarEvent
from calendar_holds.models import ProvisionalHold
from calendar_holds.services import CalendarAccountService, ConflictChecker, HoldStore
from calendar_holds.services.calendar_accounts import resolve_account
from calendar_holds.services.conflict_checker import validate_interval

logger = logging.getLogger(__name__)

router = APIRouter(tags=["holds"])


class CreateHoldRequest(BaseModel):
    calendar: str  # account id or calendar email
    start: datetime
    end: datetime
    booking_inquiry_id: uuid.UUID
    hold_duration_minutes: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CreateGroupHoldRequest(BaseModel):
    start: datetime
    end: datetime
    booking_inquiry_id: uuid.UUID
    hold_duration_minutes: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConfirmHoldRequest(BaseModel):
    confirmed_event_id: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None


def _dt_to_iso(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def hold_to_dict(hold: ProvisionalHold) -> Dict[str, Any]:
    return {
        "id": str(hold.id),
        "booking_inquiry_id": str(hold.booking_inquiry_id),
        "calendar_account_id": str(hold.calendar_account_id),
        "calendar_email": hold.calendar_email,
        "slot_start": _dt_to_iso(hold.slot_start),
        "slot_end": _dt_to_iso(hold.slot_end),
        "status": hold.status,
        "created_at": _dt_to_iso(hold.created_at),
        "expires_at": _dt_to_iso(hold.expires_at),
        "released_at": _dt_to_iso(hold.released_at),
        "confirmed_at": _dt_to_iso(hold.confirmed_at),
        "confirmed_event_id": hold.confirmed_event_id,
        "metadata": hold.hold_metadata or {},
    }


@router.post("/holds", status_code=201)
async def create_hold(body: CreateHoldRequest, store: HoldStore = Depends(get_hold_store)):
    """Place a provisional hold on one calendar.

    409 means the slot is taken ("please pick another time"); 503 means the
    calendar was busy and the request can simply be retried.
    """
    hold = await store.create(
        body.calendar,
        body.start,
        body.end,
        body.booking_inquiry_id,
        hold_duration_minutes=body.hold_duration_minutes,
        metadata=body.metadata,
    )
    return hold_to_dict(hold)


@router.post("/holds/batch", status_code=201)
async def create_group_hold(body: CreateGroupHoldRequest, store: HoldStore = Depends(get_hold_store)):
    """Hold the same slot on every active calendar, all or nothing."""
    holds = await store.create_across_calendars(
        body.start,
        body.end,
        body.booking_inquiry_id,
        hold_duration_minutes=body.hold_duration_minutes,
        metadata=body.metadata,
    )
    return {"holds": [hold_to_dict(h) for h in holds]}


@router.get("/holds/check")
async def check_slot(
    calendar: str = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    checker: ConflictChecker = Depends(get_conflict_checker),
):
    """Read-only availability check for one calendar and interval."""
    start, end = validate_interval(start, end)
    account = await resolve_account(checker.session, calendar)
    periods = await checker.find_conflicts(account, start, end)
    conflicts = [
        {"start": _dt_to_iso(p.start), "end": _dt_to_iso(p.end), "source": p.source}
        for p in periods
    ]
    return {"calendar": calendar, "available": not conflicts, "conflicts": conflicts}


@router.get("/holds")
async def list_holds(
    booking_inquiry_id: Optional[uuid.UUID] = Query(None),
    calendar: Optional[str] = Query(None),
    store: HoldStore = Depends(get_hold_store),
):
    if booking_inquiry_id is not None:
        holds = await store.list_for_inquiry(booking_inquiry_id)
    else:
        holds = await store.list_active(calendar)
    return {"holds": [hold_to_dict(h) for h in holds]}


@router.get("/holds/{hold_id}")
async def get_hold(hold_id: str, store: HoldStore = Depends(get_hold_store)):
    hold = await store.get(hold_id)
    if not hold:
        raise HTTPException(status_code=404, detail="Hold not found")
    return hold_to_dict(hold)


@router.post("/holds/{hold_id}/confirm")
async def confirm_hold(
    hold_id: str,
    request: Request,
    body: Optional[ConfirmHoldRequest] = None,
    store: HoldStore = Depends(get_hold_store),
    accounts: CalendarAccountService = Depends(get_account_service),
):
    """Confirm a hold once the owner approves.

    Without an explicit ``confirmed_event_id`` the event is first created on
    the Google calendar; if that fails the hold stays active.
    """
    body = body or ConfirmHoldRequest()
    hold = await store.ensure_active(hold_id)

    event_id = body.confirmed_event_id
    created_on_calendar = False
    account = None
    if event_id is None:
        account = await accounts.get(hold.calendar_account_id)
        if account is not None and account.calendar_type == "google":
            event_id = await _create_calendar_event(request, accounts, account, hold, body)
            created_on_calendar = True

    try:
        hold = await store.confirm(hold_id, event_id)
    except Exception:
        if created_on_calendar:
            await _delete_calendar_event(request, accounts, account, event_id)
        raise
    return hold_to_dict(hold)


@router.post("/holds/{hold_id}/release")
async def release_hold(hold_id: str, store: HoldStore = Depends(get_hold_store)):
    hold = await store.release(hold_id)
    return hold_to_dict(hold)


async def _create_calendar_event(request: Request, accounts, account, hold: ProvisionalHold, body: ConfirmHoldRequest) -> str:
    state = request.app.state
    if not state.google_oauth.configured:
        raise CalendarProviderError("Google Calendar is not configured; pass confirmed_event_id")

    event = CalendarEvent(
        title=body.summary or "Confirmed Meeting",
        start_time=hold.slot_start,
        end_time=hold.slot_end,
        booking_inquiry_id=str(hold.booking_inquiry_id),
        hold_id=str(hold.id),
        description=body.description or "",
        attendees=body.attendees,
        location=body.location,
    )
    access_token = await accounts.get_access_token(account, state.google_oauth)
    created = await state.google_client.insert_event(access_token, account.calendar_email, event.to_google_event())
    logger.info(f"Created calendar event {created.get('id')} on {account.calendar_email} for hold {hold.id}")
    return created["id"]


async def _delete_calendar_event(request: Request, accounts, account, event_id: str) -> None:
    state = request.app.state
    try:
        access_token = await accounts.get_access_token(account, state.google_oauth)
        await state.google_client.delete_event(access_token, account.calendar_email, event_id)
    except CalendarProviderError as e:
        logger.error(f"Could not remove calendar event {event_id} after failed confirm: {e}")
