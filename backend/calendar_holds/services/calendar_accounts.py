from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_holds.core.clock import Clock, utcnow
from calendar_holds.core.errors import AccountConflict, CalendarProviderError, NotFound
from calendar_holds.core.locks import KeyedLocks
from calendar_holds.integrations.google_calendar.oauth import CredentialCipher, GoogleCalendarOAuth
from calendar_holds.models import CalendarAccount

logger = logging.getLogger(__name__)

# Refresh a little before Google actually expires the token.
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def resolve_account(session: AsyncSession, identifier: Any, active_only: bool = True) -> CalendarAccount:
    """Resolve an account id or calendar email, raising NotFound if unknown"""
    a_uuid = parse_uuid(identifier)
    if a_uuid is not None:
        query = select(CalendarAccount).where(CalendarAccount.id == a_uuid)
    else:
        query = select(CalendarAccount).where(CalendarAccount.calendar_email == str(identifier))

    account = (await session.execute(query)).scalar_one_or_none()
    if account is None or (active_only and not account.is_active):
        raise NotFound(f"Calendar {identifier} not found")
    return account


class CalendarAccountService:
    """
    Registry of connected calendars
    """

    def __init__(
        self,
        session: AsyncSession,
        cipher: CredentialCipher,
        refresh_locks: Optional[KeyedLocks] = None,
        clock: Clock = utcnow,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.cipher = cipher
        self.refresh_locks = refresh_locks or KeyedLocks(timeout_seconds=30)
        self.clock = clock
        self.on_change = on_change

    # ==================== LOOKUPS ====================

    async def get(self, account_id: Any) -> Optional[CalendarAccount]:
        """Get calendar account by ID"""
        a_uuid = parse_uuid(account_id)
        if a_uuid is None:
            return None

        result = await self.session.execute(
            select(CalendarAccount).where(CalendarAccount.id == a_uuid)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, calendar_email: str) -> Optional[CalendarAccount]:
        """Get calendar account by its calendar address"""
        result = await self.session.execute(
            select(CalendarAccount).where(CalendarAccount.calendar_email == calendar_email)
        )
        return result.scalar_one_or_none()

    async def resolve(self, identifier: Any, active_only: bool = True) -> CalendarAccount:
        return await resolve_account(self.session, identifier, active_only)

    async def list_active(self) -> List[CalendarAccount]:
        """Active accounts, highest priority first"""
        result = await self.session.execute(
            select(CalendarAccount)
            .where(CalendarAccount.is_active.is_(True))
            .order_by(CalendarAccount.priority.desc(), CalendarAccount.calendar_email)
        )
        return list(result.scalars().all())

    async def get_primary(self) -> Optional[CalendarAccount]:
        """The primary account, falling back to the highest priority one"""
        result = await self.session.execute(
            select(CalendarAccount).where(
                CalendarAccount.is_primary.is_(True),
                CalendarAccount.is_active.is_(True),
            )
        )
        primary = result.scalar_one_or_none()
        if primary is not None:
            return primary

        accounts = await self.list_active()
        return accounts[0] if accounts else None

    # ==================== MUTATIONS ====================

    async def connect(
        self,
        user_email: str,
        calendar_email: str,
        credentials: Optional[dict[str, Any]] = None,
        priority: int = 0,
        is_primary: bool = False,
        calendar_type: str = "google",
    ) -> CalendarAccount:
        """Create or reactivate the account for ``calendar_email``

        A connected provider account is never switched to another calendar
        type, and stored credentials are only replaced by new ones.
        """
        account = await self.get_by_email(calendar_email)
        if account is None:
            account = CalendarAccount(calendar_email=calendar_email)
            self.session.add(account)
        elif account.is_active and account.oauth_credentials and account.calendar_type != calendar_type:
            raise AccountConflict(
                f"Calendar {calendar_email} is already connected as {account.calendar_type}"
            )

        account.user_email = user_email
        account.calendar_type = calendar_type
        account.priority = priority
        account.is_active = True
        if credentials:
            account.oauth_credentials = self.cipher.encrypt(credentials)
            account.token_expires_at = _expiry_from(credentials)

        if is_primary:
            await self._clear_primary()
            account.is_primary = True

        await self.session.commit()
        await self.session.refresh(account)
        logger.info(f"Connected calendar {calendar_email} for {user_email} (priority={priority})")
        self._changed()
        return account

    async def deactivate(self, account_id: Any) -> CalendarAccount:
        """Disconnect an account; the row stays because holds reference it"""
        account = await self.resolve(account_id, active_only=False)
        account.is_active = False
        account.is_primary = False
        account.oauth_credentials = None
        account.token_expires_at = None

        await self.session.commit()
        await self.session.refresh(account)
        logger.info(f"Disconnected calendar {account.calendar_email}")
        self._changed()
        return account

    async def set_primary(self, account_id: Any) -> CalendarAccount:
        """Mark one active account primary, unmarking any other"""
        account = await self.resolve(account_id)
        await self._clear_primary()
        account.is_primary = True

        await self.session.commit()
        await self.session.refresh(account)
        logger.info(f"Primary calendar is now {account.calendar_email}")
        self._changed()
        return account

    async def touch_synced(self, account_id: Any) -> Optional[CalendarAccount]:
        account = await self.get(account_id)
        if account:
            account.last_sync_at = self.clock()
            await self.session.commit()
        return account

    async def record_watch(
        self,
        account: CalendarAccount,
        channel_id: str,
        resource_id: Optional[str],
        expires_at: Optional[datetime],
    ) -> CalendarAccount:
        """Remember the push channel so webhook calls can be matched to it"""
        account.webhook_channel_id = channel_id
        account.webhook_resource_id = resource_id
        account.webhook_expires_at = expires_at
        await self.session.commit()
        return account

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()

    async def _clear_primary(self) -> None:
        await self.session.execute(
            update(CalendarAccount)
            .where(CalendarAccount.is_primary.is_(True))
            .values(is_primary=False)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()

    # ==================== CREDENTIALS ====================

    def get_credentials(self, account: CalendarAccount) -> dict[str, Any]:
        if not account.oauth_credentials:
            raise CalendarProviderError(
                f"Calendar {account.calendar_email} has no stored credentials",
                provider_id=str(account.id),
            )
        return self.cipher.decrypt(account.oauth_credentials)

    async def get_access_token(self, account: CalendarAccount, oauth: GoogleCalendarOAuth) -> str:
        """Return a usable access token, refreshing it if it is about to expire"""
        credentials = self.get_credentials(account)
        if not self._needs_refresh(credentials):
            return credentials["access_token"]
        credentials = await self.refresh_credentials(account.id, oauth)
        return credentials["access_token"]

    async def refresh_credentials(self, account_id: Any, oauth: GoogleCalendarOAuth) -> dict[str, Any]:
        """Refresh the OAuth token; concurrent refreshes of one account are serialized"""
        async with self.refresh_locks.hold(str(account_id)):
            account = await self.resolve(account_id)
            await self.session.refresh(account)
            credentials = self.get_credentials(account)

            # Another caller may have refreshed while we waited.
            if not self._needs_refresh(credentials):
                return credentials

            refresh_token = credentials.get("refresh_token")
            if not refresh_token:
                raise CalendarProviderError(
                    f"Calendar {account.calendar_email} has no refresh token",
                    provider_id=str(account.id),
                )

            access_token, expires_in = await oauth.refresh_access_token(refresh_token)
            expires_at = self.clock() + timedelta(seconds=expires_in)
            credentials = {
                **credentials,
                "access_token": access_token,
                "expires_at": expires_at.isoformat(),
            }
            account.oauth_credentials = self.cipher.encrypt(credentials)
            account.token_expires_at = expires_at
            await self.session.commit()

            logger.info(f"Refreshed access token for {account.calendar_email}")
            return credentials

    def _needs_refresh(self, credentials: dict[str, Any]) -> bool:
        if not credentials.get("access_token"):
            return True
        expires_at = _expiry_from(credentials)
        if expires_at is None:
            return False
        return expires_at - TOKEN_REFRESH_MARGIN <= self.clock()


def _expiry_from(credentials: Optional[dict[str, Any]]) -> Optional[datetime]:
    if not credentials or not credentials.get("expires_at"):
        return None
    return datetime.fromisoformat(credentials["expires_at"])
