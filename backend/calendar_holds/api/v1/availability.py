from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from calendar_holds.api.deps import get_availability_service, get_controls_service
from calendar_holds.models import BlackoutPeriod, WorkingHours
from calendar_holds.services import AvailabilityControlsService, AvailabilityService
from calendar_holds.services.availability import slot_to_dict

router = APIRouter(prefix="/calendar", tags=["availability"])


class BlackoutRequest(BaseModel):
    user_email: str
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None


class WorkingHoursRequest(BaseModel):
    user_email: str
    day_of_week: int = Field(..., description="0=Sunday ... 6=Saturday")
    start_time: time
    end_time: time
    timezone: str = "America/New_York"
    is_active: bool = True


def _iso(value: datetime) -> str:
    return value.replace(tzinfo=timezone.utc).isoformat()


def _blackout_to_dict(blackout: BlackoutPeriod) -> dict:
    return {
        "id": str(blackout.id),
        "user_email": blackout.user_email,
        "title": blackout.title,
        "description": blackout.description,
        "start": _iso(blackout.start_time),
        "end": _iso(blackout.end_time),
        "is_active": blackout.is_active,
    }


def _hours_to_dict(hours: WorkingHours) -> dict:
    return {
        "id": str(hours.id),
        "user_email": hours.user_email,
        "day_of_week": hours.day_of_week,
        "start_time": hours.start_time.strftime("%H:%M"),
        "end_time": hours.end_time.strftime("%H:%M"),
        "timezone": hours.timezone,
        "is_active": hours.is_active,
    }


@router.get("/availability")
async def get_availability(
    start: datetime = Query(...),
    end: datetime = Query(...),
    duration_minutes: int = Query(60, gt=0),
    max_slots: Optional[int] = Query(None, gt=0),
    service: AvailabilityService = Depends(get_availability_service),
):
    """
    Find slots free on every active calendar

    Considers working hours, blackouts, active holds and each provider's busy times
    """
    slots = await service.find_slots(start, end, duration_minutes, max_slots=max_slots)
    return {
        "slots": [slot_to_dict(slot) for slot in slots],
        "count": len(slots),
    }


# ==================== BLACKOUTS ====================

@router.get("/blackouts")
async def list_blackouts(
    user_email: str = Query(...),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    service: AvailabilityControlsService = Depends(get_controls_service),
):
    blackouts = await service.list_blackouts(user_email, start, end)
    return {"blackouts": [_blackout_to_dict(b) for b in blackouts]}


@router.post("/blackouts", status_code=201)
async def create_blackout(
    body: BlackoutRequest,
    service: AvailabilityControlsService = Depends(get_controls_service),
):
    blackout = await service.create_blackout(
        body.user_email,
        body.title,
        body.start,
        body.end,
        description=body.description,
    )
    return _blackout_to_dict(blackout)


@router.delete("/blackouts/{blackout_id}")
async def delete_blackout(
    blackout_id: str,
    service: AvailabilityControlsService = Depends(get_controls_service),
):
    blackout = await service.deactivate_blackout(blackout_id)
    return _blackout_to_dict(blackout)


# ==================== WORKING HOURS ====================

@router.get("/working-hours")
async def list_working_hours(
    user_email: str = Query(...),
    service: AvailabilityControlsService = Depends(get_controls_service),
):
    hours = await service.list_working_hours(user_email)
    return {"working_hours": [_hours_to_dict(h) for h in hours]}


@router.put("/working-hours")
async def set_working_hours(
    body: WorkingHoursRequest,
    service: AvailabilityControlsService = Depends(get_controls_service),
):
    hours = await service.upsert_working_hours(
        body.user_email,
        body.day_of_week,
        body.start_time,
        body.end_time,
        timezone=body.timezone,
        is_active=body.is_active,
    )
    return _hours_to_dict(hours)
