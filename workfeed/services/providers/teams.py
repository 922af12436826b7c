"""Microsoft Teams adapter (Graph chats API)."""

from __future__ import annotations

import html
import logging
import re
from typing import Any
from urllib.parse import quote

from workfeed.errors import WorkfeedError
from workfeed.models import Notification, Priority, Provider

from .base import OAuthNotificationProvider, newest_first, parse_timestamp

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"

MAX_CHATS = 10
MAX_CHATS_WITH_MESSAGES = 7
BODY_LIMIT = 100

_TAG = re.compile(r"<[^>]+>")


def plain_text(body: dict[str, Any] | None) -> str:
    if not body:
        return ""
    content = body.get("content") or ""
    if body.get("contentType") == "html":
        content = html.unescape(_TAG.sub("", content))
    return content.strip()


def chat_topic(chat: dict[str, Any]) -> str:
    if chat.get("topic"):
        return chat["topic"]
    return "Direct Message" if chat.get("chatType") == "oneOnOne" else "Group Chat"


class TeamsProvider(OAuthNotificationProvider):
    provider = Provider.TEAMS

    async def fetch_notifications(self) -> list[Notification]:
        token = await self.access_token()

        chats = await self.http.get_json(
            f"{GRAPH_URL}/me/chats",
            token,
            params={"$top": MAX_CHATS, "$orderby": "lastMessagePreview/createdDateTime desc"},
        )

        notifications = []
        for chat in chats.get("value", [])[:MAX_CHATS_WITH_MESSAGES]:
            try:
                message = await self._latest_message(token, chat["id"])
            except WorkfeedError as e:
                # Chats we cannot read are skipped
                logger.debug(f"Skipping Teams chat {chat['id']}: {e}")
                continue
            if message is None or message.get("messageType") == "systemEventMessage":
                continue
            notifications.append(self._to_notification(chat, message))

        return newest_first(notifications)

    async def _latest_message(self, token: str, chat_id: str) -> dict[str, Any] | None:
        messages = await self.http.get_json(
            f"{GRAPH_URL}/me/chats/{quote(chat_id, safe='')}/messages",
            token,
            params={"$top": 1, "$orderby": "createdDateTime desc"},
        )
        values = messages.get("value") or []
        return values[0] if values else None

    def _to_notification(self, chat: dict[str, Any], message: dict[str, Any]) -> Notification:
        sender = ((message.get("from") or {}).get("user") or {}).get("displayName") or "Unknown"
        return Notification(
            id=f"teams-{chat['id']}-{message['id']}",
            provider=self.provider,
            title=chat_topic(chat),
            subtitle=sender,
            body=plain_text(message.get("body"))[:BODY_LIMIT],
            timestamp=parse_timestamp(message.get("createdDateTime")) or self._now(),
            target_url=message.get("webUrl"),
            icon_hint=self.provider.icon_hint,
            priority=Priority.NORMAL,
        )
