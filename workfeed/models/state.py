"""Published aggregation snapshot."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from .notification import Notification, NotificationGroup
from .provider import Provider


@dataclass(frozen=True)
class AggregatedState:
    """Immutable view of one complete refresh round.

    Rebuilt wholesale on every round and on every pin toggle; never patched.
    """

    pinned: tuple[Notification, ...] = ()
    groups: tuple[NotificationGroup, ...] = ()
    recent: tuple[Notification, ...] = ()
    upcoming: tuple[Notification, ...] = ()
    is_refreshing: bool = False
    last_refresh_at: datetime | None = None
    is_showing_sample_data: bool = False
    errors: Mapping[Provider, str] = field(default_factory=lambda: MappingProxyType({}))
