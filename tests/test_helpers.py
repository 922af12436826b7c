"""Tests for the shared adapter helpers: timestamps, ranking, pagination."""

from datetime import datetime, timedelta, timezone

from conftest import NOW
from workfeed.models import Notification, Priority, Provider
from workfeed.services.providers.base import (
    collect_pages,
    deduplicate,
    isoformat_z,
    newest_first,
    parse_timestamp,
    priority_for_start,
    relative_time,
)


def note(id_, url=None, minutes=0):
    return Notification(id_, Provider.GITHUB, id_, "", "", NOW + timedelta(minutes=minutes), target_url=url)


def test_parse_timestamp_variants():
    assert parse_timestamp("2025-03-10T12:00:00Z") == NOW
    assert parse_timestamp("2025-03-10T12:00:00.500Z") == NOW.replace(microsecond=500000)
    assert parse_timestamp("2025-03-10T14:00:00+02:00") == NOW
    assert parse_timestamp("2025-03-10T12:00:00") == NOW


def test_parse_timestamp_truncates_long_fractions():
    parsed = parse_timestamp("2025-03-10T12:00:00.9876543Z")
    assert parsed.microsecond == 987654
    assert parsed.tzinfo is not None


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_isoformat_z_drops_fraction():
    moment = datetime(2025, 3, 10, 14, 0, 0, 123, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_z(moment) == "2025-03-10T12:00:00Z"


def test_priority_for_start_boundaries():
    assert priority_for_start(NOW + timedelta(minutes=15), NOW) is Priority.HIGH
    assert priority_for_start(NOW + timedelta(minutes=16), NOW) is Priority.NORMAL
    assert priority_for_start(NOW + timedelta(minutes=60), NOW) is Priority.NORMAL
    assert priority_for_start(NOW + timedelta(minutes=61), NOW) is Priority.LOW
    assert priority_for_start(NOW - timedelta(minutes=5), NOW) is Priority.HIGH


def test_relative_time():
    assert relative_time(NOW - timedelta(seconds=30), NOW) == "just now"
    assert relative_time(NOW - timedelta(minutes=59), NOW) == "59 min. ago"
    assert relative_time(NOW - timedelta(hours=2), NOW) == "2 hr. ago"
    assert relative_time(NOW - timedelta(days=1), NOW) == "1 day ago"
    assert relative_time(NOW - timedelta(days=4), NOW) == "4 days ago"


def test_deduplicate_by_id_and_url():
    items = [
        note("a", "https://x/1"),
        note("a", "https://x/2"),
        note("b", "https://x/1"),
        note("c"),
        note("d"),
    ]

    assert [n.id for n in deduplicate(items)] == ["a", "c", "d"]


def test_newest_first_is_stable():
    items = [note("old", minutes=-5), note("tie-1"), note("tie-2")]
    assert [n.id for n in newest_first(items)] == ["tie-1", "tie-2", "old"]


async def test_collect_pages_stops_on_short_page():
    requested = []

    async def fetch(page):
        requested.append(page)
        return list(range(3)) if page < 3 else [0]

    items = await collect_pages(fetch, page_size=3)

    assert requested == [1, 2, 3]
    assert len(items) == 7


async def test_collect_pages_respects_page_cap():
    async def fetch(page):
        return [page] * 2

    items = await collect_pages(fetch, max_pages=5, page_size=2)

    assert items == [1, 1, 2, 2, 3, 3, 4, 4, 5, 5]
