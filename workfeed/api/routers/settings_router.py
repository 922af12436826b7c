"""Settings API routes"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from workfeed.api.dependencies import get_settings_store, parse_provider
from workfeed.repositories import SettingsStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


# ============================================
# Request/Response Models
# ============================================


class ServiceState(BaseModel):
    enabled: bool
    authenticated: bool


class SettingsResponse(BaseModel):
    services: dict[str, ServiceState]
    poll_interval_seconds: int
    background_opacity: float
    calendar_lookahead_hours: int
    notification_days: int
    selected_repositories: list[str]
    active_account: str | None = None
    pinned_ids: list[str]


class SettingsUpdate(BaseModel):
    poll_interval_seconds: int | None = Field(default=None, gt=0)
    background_opacity: float | None = None
    calendar_lookahead_hours: int | None = None
    notification_days: int | None = None


class ServiceUpdate(BaseModel):
    enabled: bool


class RepositorySelection(BaseModel):
    repositories: list[str]


def _snapshot(store: SettingsStore) -> SettingsResponse:
    return SettingsResponse(**store.as_dict())


# ============================================
# Endpoints
# ============================================


@router.get("", response_model=SettingsResponse)
async def get_settings(store: SettingsStore = Depends(get_settings_store)) -> SettingsResponse:
    return _snapshot(store)


@router.patch("", response_model=SettingsResponse)
async def update_settings(
    update: SettingsUpdate,
    store: SettingsStore = Depends(get_settings_store),
) -> SettingsResponse:
    """Apply the given preferences; out-of-range values are clamped"""
    if update.poll_interval_seconds is not None:
        store.set_poll_interval(update.poll_interval_seconds)
    if update.background_opacity is not None:
        store.set_background_opacity(update.background_opacity)
    if update.calendar_lookahead_hours is not None:
        store.set_calendar_lookahead(update.calendar_lookahead_hours)
    if update.notification_days is not None:
        store.set_notification_days(update.notification_days)
    return _snapshot(store)


@router.patch("/services/{provider}", response_model=SettingsResponse)
async def update_service(
    provider: str,
    update: ServiceUpdate,
    store: SettingsStore = Depends(get_settings_store),
) -> SettingsResponse:
    p = parse_provider(provider)
    store.set_enabled(p, update.enabled)
    logger.info(f"{p.display_name} {'enabled' if update.enabled else 'disabled'}")
    return _snapshot(store)


@router.put("/repositories", response_model=SettingsResponse)
async def select_repositories(
    selection: RepositorySelection,
    store: SettingsStore = Depends(get_settings_store),
) -> SettingsResponse:
    """Replace the repository filter; an empty list watches the most recent ones"""
    store.set_selected_repositories(selection.repositories)
    return _snapshot(store)
