"""Feed API routes: snapshot, refresh, pins, errors and polling"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from workfeed.api.dependencies import get_aggregator, parse_provider
from workfeed.models import AggregatedState, Notification, NotificationGroup
from workfeed.services import NotificationAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feed", tags=["feed"])


# ============================================
# Response Models
# ============================================


class NotificationOut(BaseModel):
    id: str
    provider: str
    title: str
    subtitle: str
    body: str
    timestamp: datetime
    target_url: str | None = None
    is_pinned: bool = False
    icon_hint: str = ""
    priority: str
    group_key: str | None = None

    @classmethod
    def from_model(cls, n: Notification) -> "NotificationOut":
        return cls(
            id=n.id,
            provider=n.provider.value,
            title=n.title,
            subtitle=n.subtitle,
            body=n.body,
            timestamp=n.timestamp,
            target_url=n.target_url,
            is_pinned=n.is_pinned,
            icon_hint=n.icon_hint,
            priority=n.priority.name.lower(),
            group_key=n.group_key,
        )


class GroupOut(BaseModel):
    key: str
    provider: str
    notifications: list[NotificationOut]

    @classmethod
    def from_model(cls, group: NotificationGroup) -> "GroupOut":
        return cls(
            key=group.key,
            provider=group.provider.value,
            notifications=[NotificationOut.from_model(n) for n in group.notifications],
        )


class FeedResponse(BaseModel):
    pinned: list[NotificationOut]
    groups: list[GroupOut]
    recent: list[NotificationOut]
    upcoming: list[NotificationOut]
    is_refreshing: bool
    last_refresh_at: datetime | None
    is_showing_sample_data: bool
    errors: dict[str, str]
    is_polling: bool = False

    @classmethod
    def from_state(cls, state: AggregatedState, *, is_polling: bool = False) -> "FeedResponse":
        return cls(
            pinned=[NotificationOut.from_model(n) for n in state.pinned],
            groups=[GroupOut.from_model(g) for g in state.groups],
            recent=[NotificationOut.from_model(n) for n in state.recent],
            upcoming=[NotificationOut.from_model(n) for n in state.upcoming],
            is_refreshing=state.is_refreshing,
            last_refresh_at=state.last_refresh_at,
            is_showing_sample_data=state.is_showing_sample_data,
            errors={p.value: message for p, message in state.errors.items()},
            is_polling=is_polling,
        )


class PinResponse(BaseModel):
    id: str
    is_pinned: bool


class PollingResponse(BaseModel):
    is_polling: bool


def _feed(aggregator: NotificationAggregator) -> FeedResponse:
    return FeedResponse.from_state(aggregator.state, is_polling=aggregator.is_polling)


# ============================================
# Endpoints
# ============================================


@router.get("", response_model=FeedResponse)
async def get_feed(aggregator: NotificationAggregator = Depends(get_aggregator)) -> FeedResponse:
    """Latest published snapshot"""
    return _feed(aggregator)


@router.post("/refresh", response_model=FeedResponse)
async def refresh_feed(
    aggregator: NotificationAggregator = Depends(get_aggregator),
) -> FeedResponse:
    """Run one refresh round and return its result"""
    await aggregator.refresh_all()
    return _feed(aggregator)


@router.post("/pins/{notification_id}", response_model=PinResponse)
async def toggle_pin(
    notification_id: str,
    aggregator: NotificationAggregator = Depends(get_aggregator),
) -> PinResponse:
    is_pinned = aggregator.toggle_pin(notification_id)
    return PinResponse(id=notification_id, is_pinned=is_pinned)


@router.delete("/errors/{provider}", status_code=204)
async def clear_error(
    provider: str,
    aggregator: NotificationAggregator = Depends(get_aggregator),
) -> Response:
    aggregator.clear_error(parse_provider(provider))
    return Response(status_code=204)


@router.post("/polling/start", response_model=PollingResponse)
async def start_polling(
    aggregator: NotificationAggregator = Depends(get_aggregator),
) -> PollingResponse:
    aggregator.start_polling()
    return PollingResponse(is_polling=True)


@router.post("/polling/stop", response_model=PollingResponse)
async def stop_polling(
    aggregator: NotificationAggregator = Depends(get_aggregator),
) -> PollingResponse:
    aggregator.stop_polling()
    return PollingResponse(is_polling=False)
