"""FastAPI dependencies that build request-scoped services from app state."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.config import Settings
from calendar_holds.core.database import get_db
from calendar_holds.services import (
    AvailabilityControlsService,
    AvailabilityService,
    CalendarAccountService,
    ConflictChecker,
    HoldStore,
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_hold_store(request: Request, db: AsyncSession = Depends(get_db)) -> HoldStore:
    state = request.app.state
    return HoldStore(
        db,
        state.hold_locks,
        busy_source=state.busy_sources,
        notifier=state.notifier,
        clock=state.clock,
        default_duration_minutes=state.settings.hold_duration_minutes,
        on_change=state.availability_cache.clear,
    )


def get_conflict_checker(request: Request, db: AsyncSession = Depends(get_db)) -> ConflictChecker:
    return ConflictChecker(db, request.app.state.busy_sources)


def get_account_service(request: Request, db: AsyncSession = Depends(get_db)) -> CalendarAccountService:
    state = request.app.state
    return CalendarAccountService(
        db,
        state.cipher,
        state.credential_locks,
        clock=state.clock,
        on_change=state.availability_cache.clear,
    )


def get_availability_service(request: Request, db: AsyncSession = Depends(get_db)) -> AvailabilityService:
    state = request.app.state
    return AvailabilityService(
        db,
        state.settings,
        busy_source=state.busy_sources,
        cache=state.availability_cache,
        clock=state.clock,
    )


def get_controls_service(request: Request, db: AsyncSession = Depends(get_db)) -> AvailabilityControlsService:
    return AvailabilityControlsService(db, on_change=request.app.state.availability_cache.clear)
