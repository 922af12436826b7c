"""Uniform notification model produced by every provider adapter."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from .provider import Priority, Provider


@dataclass(frozen=True, eq=False)
class Notification:
    """One feed item.

    Equality (and hashing) only considers ``id`` and ``is_pinned``: two
    notifications with the same id are the same logical item even if their
    content drifted between rounds.
    """

    id: str
    provider: Provider
    title: str
    subtitle: str
    body: str
    timestamp: datetime
    target_url: str | None = None
    is_pinned: bool = False
    icon_hint: str = ""
    priority: Priority = Priority.NORMAL
    group_key: str | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Notification):
            return NotImplemented
        return self.id == other.id and self.is_pinned == other.is_pinned

    def __hash__(self) -> int:
        return hash((self.id, self.is_pinned))

    def pinned(self) -> Notification:
        """Return a copy stamped as pinned."""
        return replace(self, is_pinned=True)


@dataclass(frozen=True)
class NotificationGroup:
    """Items of one provider sharing a grouping key (e.g. a repository)."""

    key: str
    provider: Provider
    notifications: tuple[Notification, ...] = field(default_factory=tuple)

    @property
    def latest(self) -> datetime | None:
        return self.notifications[0].timestamp if self.notifications else None
