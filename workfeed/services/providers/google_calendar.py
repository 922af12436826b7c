"""Google Calendar adapter: upcoming events on the primary calendar."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from workfeed.models import Notification, Provider
from workfeed.repositories import SettingsStore

from .base import (
    OAuthNotificationProvider,
    format_time_range,
    isoformat_z,
    parse_date,
    parse_timestamp,
    priority_for_start,
    utcnow,
)

CALENDAR_URL = "https://www.googleapis.com/calendar/v3"
MAX_EVENTS = 10


def event_start(event: dict[str, Any]) -> tuple[datetime | None, bool]:
    """Return ``(start, all_day)``."""
    start = event.get("start") or {}
    if start.get("dateTime"):
        return parse_timestamp(start["dateTime"]), False
    return parse_date(start.get("date")), bool(start.get("date"))


def event_end(event: dict[str, Any]) -> datetime | None:
    end = event.get("end") or {}
    return parse_timestamp(end.get("dateTime")) or parse_date(end.get("date"))


def meeting_url(event: dict[str, Any]) -> str | None:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    for entry in (event.get("conferenceData") or {}).get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return None


class GoogleCalendarProvider(OAuthNotificationProvider):
    provider = Provider.GOOGLE_CALENDAR

    def __init__(
        self,
        http,
        oauth,
        config,
        settings: SettingsStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(http, oauth, config, clock)
        self.settings = settings

    async def fetch_notifications(self) -> list[Notification]:
        token = await self.access_token()
        now = self._now()
        window_end = now + timedelta(hours=self.settings.calendar_lookahead_hours)

        response = await self.http.get_json(
            f"{CALENDAR_URL}/calendars/primary/events",
            token,
            params={
                "timeMin": isoformat_z(now),
                "timeMax": isoformat_z(window_end),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": MAX_EVENTS,
            },
        )

        results = []
        for event in response.get("items") or []:
            if event.get("status") == "cancelled":
                continue
            results.append(self._to_notification(event, now))
        return results[:MAX_EVENTS]

    def _to_notification(self, event: dict[str, Any], now: datetime) -> Notification:
        start, all_day = event_start(event)
        link = meeting_url(event)
        if start is None:
            subtitle = ""
            # Sorts after everything else and never counts as urgent
            start = datetime.max.replace(tzinfo=now.tzinfo)
        else:
            subtitle = format_time_range(start, event_end(event), all_day=all_day)

        return Notification(
            id=f"gcal-{event['id']}",
            provider=self.provider,
            title=event.get("summary") or "No Title",
            subtitle=subtitle,
            body="Online Meeting" if link else "",
            timestamp=start,
            target_url=link or event.get("htmlLink"),
            icon_hint=self.provider.icon_hint,
            priority=priority_for_start(start, now),
        )
