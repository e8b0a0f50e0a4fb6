"""Thin aiohttp client for the Google Calendar API v3"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from calendar_holds.core.clock import to_utc_naive
from calendar_holds.core.errors import CalendarProviderError
from calendar_holds.integrations.providers.base import BusyPeriod

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/calendar/v3"


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_rfc3339(value: str) -> datetime:
    return to_utc_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))


class GoogleCalendarClient:
    """Calls the Calendar API with a caller-supplied access token."""

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{API_BASE}{path}",
                    headers=headers,
                    json=json_body,
                    params=params,
                ) as resp:
                    if resp.status == 204:
                        return {}
                    if resp.status >= 400:
                        error_text = await resp.text()
                        logger.error(f"Google Calendar {method} {path} failed ({resp.status}): {error_text}")
                        raise CalendarProviderError(f"Google Calendar returned {resp.status} for {method} {path}")
                    return await resp.json()
        except aiohttp.ClientError as e:
            logger.error(f"Google Calendar {method} {path} error: {e}")
            raise CalendarProviderError(f"Google Calendar unreachable: {e}") from e

    async def get_calendar(self, access_token: str, calendar_id: str = "primary") -> dict[str, Any]:
        return await self._request("GET", f"/calendars/{quote(calendar_id)}", access_token)

    async def freebusy(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyPeriod]:
        """Busy intervals for one calendar, as naive UTC ``BusyPeriod`` objects."""
        data = await self._request(
            "POST",
            "/freeBusy",
            access_token,
            json_body={
                "timeMin": _rfc3339(time_min),
                "timeMax": _rfc3339(time_max),
                "items": [{"id": calendar_id}],
            },
        )
        calendar = (data.get("calendars") or {}).get(calendar_id) or {}
        if calendar.get("errors"):
            raise CalendarProviderError(f"Free/busy lookup failed for {calendar_id}: {calendar['errors']}")

        return [
            BusyPeriod(
                start=_parse_rfc3339(slot["start"]),
                end=_parse_rfc3339(slot["end"]),
                source="calendar",
            )
            for slot in calendar.get("busy", [])
            if slot.get("start") and slot.get("end")
        ]

    async def insert_event(self, access_token: str, calendar_id: str, event: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "POST", f"/calendars/{quote(calendar_id)}/events", access_token, json_body=event
        )

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        await self._request(
            "DELETE", f"/calendars/{quote(calendar_id)}/events/{quote(event_id)}", access_token
        )

    async def watch(
        self,
        access_token: str,
        calendar_id: str,
        channel_id: str,
        address: str,
    ) -> dict[str, Any]:
        """Subscribe ``address`` to push notifications for the calendar."""
        return await self._request(
            "POST",
            f"/calendars/{quote(calendar_id)}/events/watch",
            access_token,
            json_body={"id": channel_id, "type": "web_hook", "address": address},
        )
