"""Provider identity and notification priority."""

from __future__ import annotations

from enum import Enum, IntEnum


class Provider(str, Enum):
    """One external service integration."""

    TEAMS = "teams"
    GITHUB = "github"
    NOTION = "notion"
    SYSTEM_CALENDAR = "system_calendar"
    GOOGLE_CALENDAR = "google_calendar"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def icon_hint(self) -> str:
        return _ICON_HINTS[self]

    @property
    def is_calendar(self) -> bool:
        """Calendar sources land in the upcoming section instead of recent."""
        return self in (Provider.SYSTEM_CALENDAR, Provider.GOOGLE_CALENDAR)

    @property
    def uses_oauth(self) -> bool:
        return self is not Provider.SYSTEM_CALENDAR

    @property
    def supports_multiple_accounts(self) -> bool:
        return self is Provider.GITHUB


_DISPLAY_NAMES = {
    Provider.TEAMS: "Microsoft Teams",
    Provider.GITHUB: "GitHub",
    Provider.NOTION: "Notion",
    Provider.SYSTEM_CALENDAR: "System Calendar",
    Provider.GOOGLE_CALENDAR: "Google Calendar",
}

_ICON_HINTS = {
    Provider.TEAMS: "bubble.left.and.bubble.right",
    Provider.GITHUB: "arrow.triangle.branch",
    Provider.NOTION: "doc.text",
    Provider.SYSTEM_CALENDAR: "calendar",
    Provider.GOOGLE_CALENDAR: "calendar.badge.clock",
}


class Priority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3
