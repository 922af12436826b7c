"""Services: OAuth, provider adapters, aggregation."""

from .aggregator import NotificationAggregator, build_state
from .http_client import HttpClient
from .oauth import AuthorizationState, OAuthEngine
from .oauth_config import ProviderConfig, TokenStyle, config_for
from .presenter import AuthorizationPresenter, ConsentCallback, LoopbackAuthorizationPresenter
from .sample_data import sample_notifications

__all__ = [
    "AuthorizationPresenter",
    "AuthorizationState",
    "ConsentCallback",
    "HttpClient",
    "LoopbackAuthorizationPresenter",
    "NotificationAggregator",
    "OAuthEngine",
    "ProviderConfig",
    "TokenStyle",
    "build_state",
    "config_for",
    "sample_notifications",
]
