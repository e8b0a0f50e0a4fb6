"""Service configuration.

Settings are read once from the environment (and an optional ``.env`` file)
into an explicit ``Settings`` object. The app factory keeps it on
``app.state.settings`` and hands it to every service that needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_time(name: str, default: str) -> time:
    return time.fromisoformat(os.getenv(name, default))


@dataclass
class Settings:
    database_url: str
    database_echo: bool = False

    # Provisional holds
    hold_duration_minutes: int = 30
    hold_lock_timeout_seconds: float = 2.0
    hold_sweep_interval_seconds: float = 60.0
    hold_sweeper_enabled: bool = True

    # Availability search
    availability_cache_ttl_minutes: int = 15
    slot_interval_minutes: int = 60
    default_workday_start: time = time(9, 0)
    default_workday_end: time = time(17, 0)
    default_timezone: str = "America/New_York"
    max_slots: int = 20

    # Google Calendar OAuth
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    calendar_webhook_url: Optional[str] = None
    encryption_key: Optional[str] = None

    # Twilio notifications
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    hold_notify_sms_to: Optional[str] = None

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    def __post_init__(self) -> None:
        if self.hold_duration_minutes <= 0:
            raise ValueError("hold_duration_minutes must be positive")
        if self.hold_lock_timeout_seconds <= 0:
            raise ValueError("hold_lock_timeout_seconds must be positive")
        if not 60 <= self.hold_sweep_interval_seconds <= 300:
            raise ValueError("hold_sweep_interval_seconds must be between 60 and 300")
        if self.slot_interval_minutes <= 0 or self.max_slots <= 0:
            raise ValueError("slot_interval_minutes and max_slots must be positive")
        if self.default_workday_start >= self.default_workday_end:
            raise ValueError("default workday must start before it ends")

    @property
    def async_database_url(self) -> str:
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql", "postgresql+asyncpg", 1)
        return url

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)

        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")

        return cls(
            database_url=database_url,
            database_echo=_env_bool("DATABASE_ECHO", False),
            hold_duration_minutes=int(os.getenv("HOLD_DURATION_MINUTES", 30)),
            hold_lock_timeout_seconds=float(os.getenv("HOLD_LOCK_TIMEOUT_SECONDS", 2.0)),
            hold_sweep_interval_seconds=float(os.getenv("HOLD_SWEEP_INTERVAL_SECONDS", 60)),
            hold_sweeper_enabled=_env_bool("HOLD_SWEEPER_ENABLED", True),
            availability_cache_ttl_minutes=int(os.getenv("AVAILABILITY_CACHE_TTL_MINUTES", 15)),
            slot_interval_minutes=int(os.getenv("SLOT_INTERVAL_MINUTES", 60)),
            default_workday_start=_env_time("DEFAULT_WORKDAY_START", "09:00"),
            default_workday_end=_env_time("DEFAULT_WORKDAY_END", "17:00"),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "America/New_York"),
            max_slots=int(os.getenv("MAX_SLOTS", 20)),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
            google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI"),
            calendar_webhook_url=os.getenv("CALENDAR_WEBHOOK_URL"),
            encryption_key=os.getenv("ENCRYPTION_KEY"),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
            hold_notify_sms_to=os.getenv("HOLD_NOTIFY_SMS_TO"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", 8000)),
        )
