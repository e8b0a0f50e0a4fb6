"""Google Calendar OAuth 2.0 Flow Handler"""

import json
import logging
from typing import Any, Optional, Tuple
from urllib.parse import urlencode

import aiohttp
from cryptography.fernet import Fernet, InvalidToken

from calendar_holds.core.config import Settings
from calendar_holds.core.errors import CalendarProviderError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"


class CredentialCipher:
    """Encrypts the per-account OAuth credential blob for storage."""

    def __init__(self, key: Optional[str] = None):
        if not key:
            logger.warning("ENCRYPTION_KEY not set; stored credentials will not survive a restart")
            key = Fernet.generate_key()
        self._fernet = Fernet(key)

    def encrypt(self, credentials: dict[str, Any]) -> str:
        return self._fernet.encrypt(json.dumps(credentials).encode()).decode()

    def decrypt(self, blob: str) -> dict[str, Any]:
        try:
            return json.loads(self._fernet.decrypt(blob.encode()).decode())
        except InvalidToken:
            raise CalendarProviderError("Stored calendar credentials cannot be decrypted") from None


class GoogleCalendarOAuth:
    """Handle Google Calendar OAuth 2.0 flow"""

    def __init__(self, settings: Settings):
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_uri = settings.google_redirect_uri
        self.scopes = [
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/calendar.events",
        ]

        if not all([self.client_id, self.client_secret, self.redirect_uri]):
            logger.warning("Google Calendar OAuth credentials not configured")

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def get_authorization_url(self, state: str) -> str:
        """
        Generate the Google OAuth authorization URL

        Args:
            state: Owner email, echoed back on the callback

        Returns:
            Authorization URL for user to visit
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",  # Get refresh token
            "prompt": "consent",  # Force consent screen
            "state": state,
        }

        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_tokens(
        self,
        code: str
    ) -> Tuple[str, Optional[str], int]:
        """
        Exchange authorization code for access and refresh tokens

        Returns:
            Tuple of (access_token, refresh_token, expires_in_seconds)
        """
        data = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })
        logger.info("Successfully exchanged code for tokens")
        return data["access_token"], data.get("refresh_token"), data.get("expires_in", 3600)

    async def refresh_access_token(self, refresh_token: str) -> Tuple[str, int]:
        """
        Use refresh token to get new access token

        Returns:
            Tuple of (new_access_token, expires_in_seconds)
        """
        data = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        logger.info("Successfully refreshed access token")
        return data["access_token"], data.get("expires_in", 3600)

    async def _post_token(self, form: dict[str, Any]) -> dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(TOKEN_URL, data=form) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.error(f"Token request failed: {error_text}")
                        raise CalendarProviderError(f"Google token endpoint returned {resp.status}")
                    data = await resp.json()
        except aiohttp.ClientError as e:
            logger.error(f"Token request error: {e}")
            raise CalendarProviderError(f"Google token endpoint unreachable: {e}") from e

        if not data.get("access_token"):
            raise CalendarProviderError("No access token in response")
        return data
