"""Dependency injection utilities for FastAPI"""

from fastapi import HTTPException, Request

from workfeed.container import Container
from workfeed.models import Provider
from workfeed.repositories import SettingsStore
from workfeed.services import NotificationAggregator, OAuthEngine


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return container


def get_aggregator(request: Request) -> NotificationAggregator:
    return get_container(request).aggregator


def get_oauth(request: Request) -> OAuthEngine:
    return get_container(request).oauth


def get_settings_store(request: Request) -> SettingsStore:
    return get_container(request).settings_store


def parse_provider(provider: str) -> Provider:
    """Path parameter -> Provider, 404 for unknown names."""
    try:
        return Provider(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'") from None
