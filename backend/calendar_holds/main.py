# calendar_holds/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from calendar_holds import __version__
from calendar_holds.core.clock import utcnow
from calendar_holds.core.config import Settings
from calendar_holds.core.database import build_engine, build_session_factory
from calendar_holds.core.errors import Busy, HoldServiceError, InvalidStateTransition
from calendar_holds.core.locks import KeyedLocks
from calendar_holds.integrations.google_calendar import CredentialCipher, GoogleCalendarClient, GoogleCalendarOAuth
from calendar_holds.integrations.google_calendar.busy_source import GoogleBusySource
from calendar_holds.integrations.providers import BusySourceRegistry
from calendar_holds.services import AvailabilityCache, HoldExpirySweeper, HoldNotifier

# Import Routers
from calendar_holds.api.v1 import availability
from calendar_holds.api.v1 import calendar_accounts
from calendar_holds.api.v1 import calendar_webhook
from calendar_holds.api.v1 import holds
from calendar_holds.api.v1.auth import google_calendar

logger = logging.getLogger(__name__)

# OAuth refreshes wait longer than hold creation; they include a network call.
CREDENTIAL_LOCK_TIMEOUT_SECONDS = 30.0


def _init_state(app: FastAPI, settings: Settings) -> None:
    state = app.state
    state.settings = settings
    state.clock = utcnow

    state.engine = build_engine(settings)
    state.session_factory = build_session_factory(state.engine)

    state.hold_locks = KeyedLocks(settings.hold_lock_timeout_seconds)
    state.credential_locks = KeyedLocks(CREDENTIAL_LOCK_TIMEOUT_SECONDS)
    state.availability_cache = AvailabilityCache(settings.availability_cache_ttl_minutes, clock=state.clock)

    state.cipher = CredentialCipher(settings.encryption_key)
    state.google_oauth = GoogleCalendarOAuth(settings)
    state.google_client = GoogleCalendarClient()
    state.busy_sources = BusySourceRegistry({
        "google": GoogleBusySource(
            state.session_factory,
            state.cipher,
            state.google_oauth,
            state.google_client,
            state.credential_locks,
        ),
    })

    state.notifier = HoldNotifier(settings)
    state.sweeper = HoldExpirySweeper(
        state.session_factory,
        interval_seconds=settings.hold_sweep_interval_seconds,
        clock=state.clock,
        on_change=state.availability_cache.clear,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    if state.settings.hold_sweeper_enabled:
        state.sweeper.start()
    else:
        logger.info("Hold expiry sweeper disabled")
    try:
        yield
    finally:
        await state.sweeper.stop()
        await state.notifier.drain()
        await state.engine.dispose()


async def hold_service_error_handler(request: Request, exc: HoldServiceError) -> JSONResponse:
    content = {"error": exc.code, "detail": exc.message}
    headers = None
    if isinstance(exc, InvalidStateTransition) and exc.current_status:
        content["current_status"] = exc.current_status
    if isinstance(exc, Busy):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API; state is created here so it exists even without a lifespan run."""
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Calendar Holds API",
        description="Provisional calendar holds for booking inquiries",
        version=__version__,
        lifespan=lifespan,
    )
    _init_state(app, settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HoldServiceError, hold_service_error_handler)

    # Include routers
    app.include_router(holds.router, prefix="/api")
    app.include_router(availability.router, prefix="/api")
    app.include_router(calendar_accounts.router, prefix="/api")
    app.include_router(google_calendar.router)
    app.include_router(calendar_webhook.router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Calendar Holds API",
            "version": __version__,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "sweeper_running": app.state.sweeper.running,
        }

    return app
