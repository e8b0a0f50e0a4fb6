from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import async_sessionmaker

from calendar_holds.core.clock import Clock, utcnow
from calendar_holds.core.locks import KeyedLocks
from calendar_holds.integrations.google_calendar.client import GoogleCalendarClient
from calendar_holds.integrations.google_calendar.oauth import CredentialCipher, GoogleCalendarOAuth
from calendar_holds.integrations.providers.base import BusyPeriod
from calendar_holds.services.calendar_accounts import CalendarAccountService

logger = logging.getLogger(__name__)


class GoogleBusySource:
    """Busy overlay backed by the Google free/busy API.

    Token refreshes are written through a session of their own so they
    never join the caller's hold transaction.
    """

    name = "google"

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cipher: CredentialCipher,
        oauth: GoogleCalendarOAuth,
        client: GoogleCalendarClient,
        refresh_locks: KeyedLocks,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.cipher = cipher
        self.oauth = oauth
        self.client = client
        self.refresh_locks = refresh_locks
        self.clock = clock

    async def busy_periods(self, account, start: datetime, end: datetime) -> list[BusyPeriod]:
        async with self.session_factory() as session:
            accounts = CalendarAccountService(session, self.cipher, self.refresh_locks, clock=self.clock)
            access_token = await accounts.get_access_token(account, self.oauth)

        periods = await self.client.freebusy(access_token, account.calendar_email, start, end)
        logger.debug(f"{len(periods)} busy period(s) on {account.calendar_email} between {start} and {end}")
        return periods
