"""Data models for the workfeed aggregation engine."""

from .notification import Notification, NotificationGroup
from .provider import Priority, Provider
from .service import ServiceConfig
from .state import AggregatedState
from .token import AccountIdentity, TokenBundle

__all__ = [
    "AccountIdentity",
    "AggregatedState",
    "Notification",
    "NotificationGroup",
    "Priority",
    "Provider",
    "ServiceConfig",
    "TokenBundle",
]
