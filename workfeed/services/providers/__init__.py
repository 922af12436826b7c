from .base import NotificationProvider, OAuthNotificationProvider, deduplicate
from .github import GitHubProvider
from .google_calendar import GoogleCalendarProvider
from .notion import NotionProvider
from .system_calendar import (
    CalendarAccess,
    CalendarEvent,
    CalendarSource,
    StaticCalendarSource,
    SystemCalendarProvider,
    UnavailableCalendarSource,
)
from .teams import TeamsProvider

__all__ = [
    "CalendarAccess",
    "CalendarEvent",
    "CalendarSource",
    "GitHubProvider",
    "GoogleCalendarProvider",
    "NotificationProvider",
    "NotionProvider",
    "OAuthNotificationProvider",
    "StaticCalendarSource",
    "SystemCalendarProvider",
    "TeamsProvider",
    "UnavailableCalendarSource",
    "deduplicate",
]
