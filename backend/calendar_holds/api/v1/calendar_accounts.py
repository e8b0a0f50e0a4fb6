from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from calendar_holds.api.deps import get_account_service
from calendar_holds.models import CalendarAccount
from calendar_holds.services import CalendarAccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar/accounts", tags=["calendar-accounts"])


class RegisterAccountRequest(BaseModel):
    user_email: str
    calendar_email: str
    priority: int = 0
    is_primary: bool = False


def _iso(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def account_to_dict(account: CalendarAccount) -> dict:
    """Public view of an account; credentials never leave the service"""
    return {
        "id": str(account.id),
        "user_email": account.user_email,
        "calendar_email": account.calendar_email,
        "calendar_type": account.calendar_type,
        "is_primary": account.is_primary,
        "priority": account.priority,
        "is_active": account.is_active,
        "connected": bool(account.oauth_credentials),
        "last_sync_at": _iso(account.last_sync_at),
        "created_at": _iso(account.created_at),
    }


@router.get("")
async def list_accounts(accounts: CalendarAccountService = Depends(get_account_service)):
    active = await accounts.list_active()
    primary = await accounts.get_primary()
    return {
        "accounts": [account_to_dict(a) for a in active],
        "primary_id": str(primary.id) if primary else None,
    }


@router.post("", status_code=201)
async def register_account(
    body: RegisterAccountRequest,
    accounts: CalendarAccountService = Depends(get_account_service),
):
    """
    Register a calendar without an external provider

    Holds and blackouts still apply to it; Google calendars connect through OAuth instead.
    A calendar already connected through Google is left untouched (409).
    """
    if "@" not in body.calendar_email:
        raise HTTPException(status_code=400, detail="calendar_email must be an email address")

    account = await accounts.connect(
        body.user_email,
        body.calendar_email,
        priority=body.priority,
        is_primary=body.is_primary,
        calendar_type="native",
    )
    return account_to_dict(account)


@router.post("/{account_id}/primary")
async def set_primary_account(
    account_id: str,
    accounts: CalendarAccountService = Depends(get_account_service),
):
    account = await accounts.set_primary(account_id)
    return account_to_dict(account)


@router.delete("/{account_id}")
async def deactivate_account(
    account_id: str,
    accounts: CalendarAccountService = Depends(get_account_service),
):
    account = await accounts.deactivate(account_id)
    return account_to_dict(account)
