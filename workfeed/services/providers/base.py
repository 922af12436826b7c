"""Common provider adapter interface and shared helpers."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from workfeed.models import Notification, Priority, Provider

if TYPE_CHECKING:
    from workfeed.services.http_client import HttpClient
    from workfeed.services.oauth import OAuthEngine
    from workfeed.services.oauth_config import ProviderConfig

logger = logging.getLogger(__name__)

MAX_PAGES = 5
PAGE_SIZE = 100

_FRACTION = re.compile(r"(\.\d{6})\d+")
_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationProvider(ABC):
    """One notification source.

    Subclasses return normalized notifications or raise a ``WorkfeedError``;
    the aggregator turns raised errors into per-provider error entries.
    """

    provider: Provider

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._now = clock

    @property
    def is_calendar_source(self) -> bool:
        return self.provider.is_calendar

    @abstractmethod
    async def fetch_notifications(self) -> list[Notification]:
        """Fetch, normalize and rank this provider's current items."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider.value}>"


class OAuthNotificationProvider(NotificationProvider):
    """Adapter backed by a bearer-token REST API."""

    def __init__(
        self,
        http: HttpClient,
        oauth: OAuthEngine,
        config: ProviderConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(clock)
        self.http = http
        self.oauth = oauth
        self.config = config

    async def access_token(self) -> str:
        return await self.oauth.get_valid_access_token(self.provider, self.config)


# ============================================
# Ranking helpers
# ============================================


def deduplicate(notifications: Iterable[Notification]) -> list[Notification]:
    """Drop repeats by id and by target URL; first occurrence wins."""
    seen_ids: set[str] = set()
    seen_urls: set[str] = set()
    result: list[Notification] = []
    for n in notifications:
        if n.id in seen_ids:
            continue
        if n.target_url and n.target_url in seen_urls:
            continue
        seen_ids.add(n.id)
        if n.target_url:
            seen_urls.add(n.target_url)
        result.append(n)
    return result


def newest_first(notifications: Iterable[Notification]) -> list[Notification]:
    # sorted() is stable: ties keep input order
    return sorted(notifications, key=lambda n: n.timestamp, reverse=True)


def priority_for_start(start: datetime, now: datetime) -> Priority:
    """Time-bound items: <=15 min high, <=60 min normal, otherwise low."""
    minutes = (start - now).total_seconds() / 60
    if minutes <= 15:
        return Priority.HIGH
    if minutes <= 60:
        return Priority.NORMAL
    return Priority.LOW


# ============================================
# Timestamps
# ============================================


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-8601 with or without fractional seconds.

    Formats are tried in order and the first match wins. Fractions longer
    than microseconds (Graph sends seven digits) are truncated. Naive
    values are taken as UTC.
    """
    if not value:
        return None
    text = _FRACTION.sub(r"\1", value.strip())
    for fmt in _TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    logger.debug(f"Unparseable timestamp: {value!r}")
    return None


def parse_date(value: str | None) -> datetime | None:
    """Parse a date-only value (``YYYY-MM-DD``) as local midnight."""
    if not value:
        return None
    try:
        day = date.fromisoformat(value)
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day).astimezone()


def format_clock(moment: datetime) -> str:
    return moment.astimezone().strftime("%I:%M %p").lstrip("0")


def format_time_range(start: datetime, end: datetime | None, *, all_day: bool = False) -> str:
    if all_day:
        return "All Day"
    if end is None:
        return format_clock(start)
    return f"{format_clock(start)} - {format_clock(end)}"


def relative_time(moment: datetime, now: datetime) -> str:
    seconds = int((now - moment).total_seconds())
    if seconds < 0:
        return "in the future"
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} min. ago"
    if seconds < 86400:
        return f"{seconds // 3600} hr. ago"
    days = seconds // 86400
    return "1 day ago" if days == 1 else f"{days} days ago"


def isoformat_z(moment: datetime) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix and no fraction."""
    return moment.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def since(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


# ============================================
# Pagination
# ============================================


async def collect_pages(
    fetch_page: Callable[[int], Awaitable[list[Any]]],
    *,
    max_pages: int = MAX_PAGES,
    page_size: int = PAGE_SIZE,
) -> list[Any]:
    """Call ``fetch_page(1..n)`` until a short page or the page cap."""
    items: list[Any] = []
    for page in range(1, max_pages + 1):
        chunk = await fetch_page(page)
        items.extend(chunk)
        if len(chunk) < page_size:
            break
    return items
