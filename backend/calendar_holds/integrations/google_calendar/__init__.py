"""Google Calendar Integration"""

from .oauth import CredentialCipher, GoogleCalendarOAuth
from .models import CalendarEvent
from .client import GoogleCalendarClient

__all__ = ["CredentialCipher", "GoogleCalendarOAuth", "CalendarEvent", "GoogleCalendarClient"]
