"""Aggregation engine: concurrent refresh rounds, merge, pins and polling.

A round fans out to every active adapter at once and applies nothing until
all of them have settled. Each adapter failure becomes one entry in the
error map; it never discards another adapter's results.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from types import MappingProxyType

from workfeed.models import AggregatedState, Notification, NotificationGroup, Provider
from workfeed.repositories import SettingsStore

from .http_client import HttpClient
from .providers.base import NotificationProvider
from .sample_data import sample_notifications

logger = logging.getLogger(__name__)

MAX_PINNED = 3
MAX_RECENT = 7
MAX_GROUP_ITEMS = 3
GROUPED_PROVIDERS = frozenset({Provider.GITHUB})

StateListener = Callable[[AggregatedState], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def unique_by_id(notifications: Iterable[Notification]) -> list[Notification]:
    seen: set[str] = set()
    result = []
    for n in notifications:
        if n.id not in seen:
            seen.add(n.id)
            result.append(n)
    return result


def _newest_first(items: Iterable[Notification]) -> list[Notification]:
    return sorted(items, key=lambda n: n.timestamp, reverse=True)


def build_groups(notifications: Iterable[Notification]) -> tuple[NotificationGroup, ...]:
    buckets: dict[str, list[Notification]] = {}
    providers: dict[str, Provider] = {}
    for n in notifications:
        if n.group_key is None:
            continue
        buckets.setdefault(n.group_key, []).append(n)
        providers.setdefault(n.group_key, n.provider)

    groups = [
        NotificationGroup(
            key=key,
            provider=providers[key],
            notifications=tuple(_newest_first(items)[:MAX_GROUP_ITEMS]),
        )
        for key, items in buckets.items()
    ]
    groups.sort(key=lambda g: g.latest, reverse=True)
    return tuple(groups)


def build_state(
    pool: Sequence[Notification],
    pinned_ids: Iterable[str],
    now: datetime,
    *,
    errors: dict[Provider, str] | None = None,
    is_refreshing: bool = False,
    last_refresh_at: datetime | None = None,
    is_showing_sample_data: bool = False,
) -> AggregatedState:
    """Partition one round's pool into display sections.

    Deterministic for a given pool: sorts are stable, so ties keep pool order.
    Grouped providers also appear in ``recent``; groups are an extra view.
    """
    pinned_set = set(pinned_ids)
    pinned = [n.pinned() for n in pool if n.id in pinned_set]
    rest = [n for n in pool if n.id not in pinned_set]

    upcoming = sorted(
        (n for n in rest if n.provider.is_calendar and n.timestamp >= now),
        key=lambda n: n.timestamp,
    )

    return AggregatedState(
        pinned=tuple(_newest_first(pinned)[:MAX_PINNED]),
        groups=build_groups(n for n in rest if n.provider in GROUPED_PROVIDERS),
        recent=tuple(_newest_first(n for n in rest if not n.provider.is_calendar)[:MAX_RECENT]),
        upcoming=tuple(upcoming),
        is_refreshing=is_refreshing,
        last_refresh_at=last_refresh_at,
        is_showing_sample_data=is_showing_sample_data,
        errors=MappingProxyType(dict(errors or {})),
    )


class NotificationAggregator:
    """Owns the canonical feed state and publishes immutable snapshots."""

    def __init__(
        self,
        providers: Sequence[NotificationProvider],
        settings: SettingsStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        sample_factory: Callable[[datetime], list[Notification]] = sample_notifications,
        http: HttpClient | None = None,
    ) -> None:
        self.providers = list(providers)
        self.settings = settings
        self.http = http
        self._now = clock
        self._sample_factory = sample_factory

        self._pool: tuple[Notification, ...] = ()
        self._errors: dict[Provider, str] = {}
        self._is_refreshing = False
        self._last_refresh_at: datetime | None = None
        self._showing_sample = False
        self._state = AggregatedState()

        self._listeners: list[StateListener] = []
        self._refresh_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None
        self._rounds: set[asyncio.Task] = set()

    # ==================== Observation ====================

    @property
    def state(self) -> AggregatedState:
        return self._state

    @property
    def notifications(self) -> tuple[Notification, ...]:
        """Every item of the last round, before sectioning."""
        return self._pool

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self) -> None:
        self._state = build_state(
            self._pool,
            self.settings.pinned_ids,
            self._now(),
            errors=self._errors,
            is_refreshing=self._is_refreshing,
            last_refresh_at=self._last_refresh_at,
            is_showing_sample_data=self._showing_sample,
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Feed listener failed")

    # ==================== Refresh ====================

    async def refresh_all(self) -> AggregatedState:
        """Run one complete round and publish its result."""
        async with self._refresh_lock:
            self._is_refreshing = True
            self._errors = {}
            self._publish()
            try:
                active = [p for p in self.providers if self.settings.is_active(p.provider)]
                if not active:
                    self._pool = tuple(self._sample_factory(self._now()))
                    self._showing_sample = True
                else:
                    results = await asyncio.gather(*(self._fetch_one(p) for p in active))
                    merged: list[Notification] = []
                    errors: dict[Provider, str] = {}
                    for adapter, (items, error) in zip(active, results):
                        if error is not None:
                            errors[adapter.provider] = error
                        merged.extend(items)
                    self._pool = tuple(unique_by_id(merged))
                    self._errors = errors
                    self._showing_sample = False
                self._last_refresh_at = self._now()
            finally:
                self._is_refreshing = False
                self._publish()

        logger.debug(
            f"Refresh done: {len(self._pool)} items, errors={[p.value for p in self._errors]}"
        )
        return self._state

    async def _fetch_one(self, adapter: NotificationProvider) -> tuple[list[Notification], str | None]:
        try:
            return await adapter.fetch_notifications(), None
        except Exception as e:
            logger.warning(f"{adapter.provider.display_name} fetch failed: {type(e).__name__}: {e}")
            return [], str(e) or type(e).__name__

    # ==================== User actions ====================

    def toggle_pin(self, notification_id: str) -> bool:
        """Pin or unpin *notification_id*; return whether it ends up pinned.

        Pinning beyond capacity is ignored.
        """
        pinned = self.settings.pinned_ids
        if notification_id in pinned:
            pinned.remove(notification_id)
            is_pinned = False
        elif len(pinned) < MAX_PINNED:
            pinned.append(notification_id)
            is_pinned = True
        else:
            logger.debug(f"Pin capacity reached, ignoring {notification_id}")
            return False

        self.settings.set_pinned_ids(pinned)
        self._publish()
        return is_pinned

    def clear_error(self, provider: Provider) -> None:
        if self._errors.pop(provider, None) is not None:
            self._publish()

    # ==================== Polling ====================

    def start_polling(self) -> None:
        self.stop_polling()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Polling started (every {self.settings.poll_interval_seconds}s)")

    def stop_polling(self) -> None:
        """Cancel the timer. A round already running still completes."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
            logger.info("Polling stopped")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval_seconds)
            round_task = asyncio.create_task(self.refresh_all())
            self._rounds.add(round_task)
            round_task.add_done_callback(self._rounds.discard)
            try:
                await asyncio.shield(round_task)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Polling round failed")

    async def close(self) -> None:
        self.stop_polling()
        if self._rounds:
            await asyncio.gather(*self._rounds, return_exceptions=True)
        if self.http is not None:
            await self.http.close()
