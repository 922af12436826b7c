"""System calendar adapter.

The OS calendar is reached through a ``CalendarSource``. Permission is
checked before every fetch; a source that was already denied fails fast
instead of prompting again.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from workfeed.errors import AccessDeniedError
from workfeed.models import Notification, Provider
from workfeed.repositories import SettingsStore

from .base import NotificationProvider, format_time_range, priority_for_start, utcnow

MAX_EVENTS = 10
MEETING_HOSTS = ("zoom.us", "meet.google.com", "teams.microsoft.com")


class CalendarAccess(str, Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class CalendarEvent:
    identifier: str | None
    title: str | None
    start: datetime
    end: datetime
    all_day: bool = False
    location: str | None = None
    notes: str | None = None
    url: str | None = None


class CalendarSource(Protocol):
    def authorization_status(self) -> CalendarAccess: ...

    async def request_access(self) -> bool: ...

    async def events(self, start: datetime, end: datetime) -> list[CalendarEvent]: ...


class UnavailableCalendarSource:
    """Used where no OS calendar bridge exists."""

    def authorization_status(self) -> CalendarAccess:
        return CalendarAccess.RESTRICTED

    async def request_access(self) -> bool:
        return False

    async def events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return []


class StaticCalendarSource:
    """Fixed, already-authorized event list (handy for demos and tests)."""

    def __init__(self, events: list[CalendarEvent], access: CalendarAccess = CalendarAccess.AUTHORIZED):
        self._events = list(events)
        self.access = access
        self.requests = 0

    def authorization_status(self) -> CalendarAccess:
        return self.access

    async def request_access(self) -> bool:
        self.requests += 1
        await asyncio.sleep(0)
        return self.access is CalendarAccess.AUTHORIZED

    async def events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return [e for e in self._events if start <= e.start < end]


def meeting_info(event: CalendarEvent) -> str:
    if event.location:
        return event.location
    if event.notes and any(host in event.notes for host in MEETING_HOSTS):
        return "Online Meeting"
    return ""


class SystemCalendarProvider(NotificationProvider):
    provider = Provider.SYSTEM_CALENDAR

    def __init__(
        self,
        source: CalendarSource,
        settings: SettingsStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(clock)
        self.source = source
        self.settings = settings

    async def fetch_notifications(self) -> list[Notification]:
        status = self.source.authorization_status()
        if status in (CalendarAccess.DENIED, CalendarAccess.RESTRICTED):
            raise AccessDeniedError("Calendar access denied")
        # Only prompts when not determined yet
        if not await self.source.request_access():
            raise AccessDeniedError("Calendar access denied")

        now = self._now()
        window_end = now + timedelta(hours=self.settings.calendar_lookahead_hours)
        events = sorted(await self.source.events(now, window_end), key=lambda e: e.start)

        return [self._to_notification(event, now) for event in events[:MAX_EVENTS]]

    def _to_notification(self, event: CalendarEvent, now: datetime) -> Notification:
        return Notification(
            id=f"cal-{event.identifier or uuid.uuid4()}",
            provider=self.provider,
            title=event.title or "No Title",
            subtitle=format_time_range(event.start, event.end, all_day=event.all_day),
            body=meeting_info(event),
            timestamp=event.start,
            target_url=event.url,
            icon_hint="calendar" if event.all_day else "calendar.badge.clock",
            priority=priority_for_start(event.start, now),
        )
