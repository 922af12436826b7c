"""Notion adapter: recently edited pages."""

from __future__ import annotations

from typing import Any

from workfeed.models import Notification, Priority, Provider

from .base import OAuthNotificationProvider, parse_timestamp, relative_time

NOTION_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
PAGE_SIZE = 10

OBJECT_ICONS = {"page": "doc.text", "database": "tablecells"}


def page_title(obj: dict[str, Any]) -> str:
    """Title property of a page, else the database title, else ``Untitled``."""
    for prop in (obj.get("properties") or {}).values():
        if prop.get("type") == "title" and prop.get("title"):
            return prop["title"][0].get("plain_text") or "Untitled"
    if obj.get("title"):
        return obj["title"][0].get("plain_text") or "Untitled"
    return "Untitled"


class NotionProvider(OAuthNotificationProvider):
    provider = Provider.NOTION

    async def fetch_notifications(self) -> list[Notification]:
        token = await self.access_token()
        response = await self.http.post_json(
            f"{NOTION_URL}/search",
            token,
            {
                "sort": {"direction": "descending", "timestamp": "last_edited_time"},
                "page_size": PAGE_SIZE,
            },
            headers={"Notion-Version": NOTION_VERSION},
        )

        now = self._now()
        results = []
        for obj in response.get("results", []):
            if obj.get("object") != "page":
                continue
            edited = parse_timestamp(obj.get("last_edited_time")) or now
            results.append(
                Notification(
                    id=f"notion-{obj['id']}",
                    provider=self.provider,
                    title=page_title(obj),
                    subtitle=f"Updated {relative_time(edited, now)}",
                    body="",
                    timestamp=edited,
                    target_url=obj.get("url"),
                    icon_hint=OBJECT_ICONS.get(obj.get("object", ""), "doc"),
                    priority=Priority.NORMAL,
                )
            )
        return results[:PAGE_SIZE]
