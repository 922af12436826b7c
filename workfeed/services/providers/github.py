"""GitHub adapter: participating threads, open PRs/issues and default-branch pushes.

Four sub-sources are fetched in parallel. Each one is best-effort: a failing
sub-source is logged and contributes nothing, so only token acquisition
failures reach the aggregator's error map.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from workfeed.cache import AsyncTTLCache, cached
from workfeed.errors import NotAuthenticatedError, WorkfeedError
from workfeed.models import Notification, Priority, Provider
from workfeed.repositories import SettingsStore

from .base import (
    OAuthNotificationProvider,
    PAGE_SIZE,
    collect_pages,
    deduplicate,
    isoformat_z,
    newest_first,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
GITHUB_ACCEPT = {"Accept": "application/vnd.github+json"}

MAX_COMBINED = 15
MAX_THREADS = 8
MAX_SEARCH_RESULTS = 6
MAX_WATCHED_REPOS = 8
REPO_CACHE_TTL = 300.0

HIGH_PRIORITY_REASONS = {"review_requested", "assign", "security_alert", "mention", "team_mention"}
LOW_PRIORITY_REASONS = {"ci_activity"}

SUBJECT_ICONS = {
    "PullRequest": "arrow.triangle.pull",
    "Issue": "exclamationmark.circle",
    "Release": "tag",
    "Discussion": "bubble.left.and.bubble.right",
}
DEFAULT_ICON = "arrow.triangle.branch"
COMMIT_ICON = "arrow.up.circle"


def browser_url(api_url: str | None) -> str | None:
    """``api.github.com/repos/o/r/pulls/1`` -> ``github.com/o/r/pull/1``."""
    if not api_url:
        return None
    return api_url.replace("api.github.com/repos", "github.com").replace("/pulls/", "/pull/")


def reason_priority(reason: str) -> Priority:
    if reason in HIGH_PRIORITY_REASONS:
        return Priority.HIGH
    if reason in LOW_PRIORITY_REASONS:
        return Priority.LOW
    return Priority.NORMAL


def repository_from_api_url(repository_url: str) -> str:
    """Search items only carry ``https://api.github.com/repos/<owner>/<repo>``."""
    _, _, full_name = repository_url.partition("/repos/")
    return full_name


class GitHubProvider(OAuthNotificationProvider):
    provider = Provider.GITHUB

    def __init__(
        self,
        http,
        oauth,
        config,
        settings: SettingsStore,
        clock: Callable[[], datetime] = utcnow,
        repo_cache: AsyncTTLCache | None = None,
    ) -> None:
        super().__init__(http, oauth, config, clock)
        self.settings = settings
        self._repo_cache = repo_cache or AsyncTTLCache(maxsize=16, ttl=REPO_CACHE_TTL)

    async def fetch_notifications(self) -> list[Notification]:
        account = self.oauth.resolve_account(self.provider)
        if account is None:
            raise NotAuthenticatedError()
        token = await self.oauth.get_valid_access_token(self.provider, self.config, account)
        selected = self.settings.selected_repositories

        threads, pulls, issues, commits = await asyncio.gather(
            self._best_effort("threads", self.fetch_threads(token, selected)),
            self._best_effort("pull requests", self.fetch_pull_requests(token, selected)),
            self._best_effort("issues", self.fetch_issues(token, selected)),
            self._best_effort("commits", self.fetch_commit_updates(token, account, selected)),
        )

        combined = newest_first([*threads, *pulls, *issues, *commits])
        return deduplicate(combined)[:MAX_COMBINED]

    async def _best_effort(self, label: str, fetch: Awaitable[list[Notification]]) -> list[Notification]:
        try:
            return await fetch
        except WorkfeedError as e:
            logger.warning(f"GitHub {label} unavailable: {e}")
        except (KeyError, TypeError) as e:
            logger.warning(f"GitHub {label} returned an unexpected payload: {e!r}")
        return []

    # ==================== Threads ====================

    async def fetch_threads(self, token: str, selected: frozenset[str]) -> list[Notification]:
        cutoff = self._now() - timedelta(days=self.settings.notification_days)
        threads = await self.http.get_json(
            f"{API_URL}/notifications",
            token,
            params={"participating": "true", "per_page": 20, "since": isoformat_z(cutoff)},
            headers=GITHUB_ACCEPT,
        )

        results = []
        for thread in threads:
            repo = thread["repository"]["full_name"]
            if selected and repo not in selected:
                continue
            subject = thread.get("subject") or {}
            reason = thread.get("reason", "")
            results.append(
                Notification(
                    id=f"gh-thread-{thread['id']}",
                    provider=self.provider,
                    title=subject.get("title", ""),
                    subtitle=repo,
                    body=reason.replace("_", " ").title(),
                    timestamp=parse_timestamp(thread.get("updated_at")) or self._now(),
                    target_url=browser_url(subject.get("url")),
                    icon_hint=SUBJECT_ICONS.get(subject.get("type", ""), DEFAULT_ICON),
                    priority=reason_priority(reason),
                    group_key=repo,
                )
            )
            if len(results) >= MAX_THREADS:
                break
        return results

    # ==================== Search ====================

    async def _search(self, token: str, query: str) -> list[dict[str, Any]]:
        response = await self.http.get_json(
            f"{API_URL}/search/issues",
            token,
            params={"q": query, "sort": "updated", "order": "desc", "per_page": MAX_SEARCH_RESULTS},
            headers=GITHUB_ACCEPT,
        )
        return response.get("items", [])

    async def fetch_pull_requests(self, token: str, selected: frozenset[str]) -> list[Notification]:
        items = await self._search(token, "is:pr is:open involves:@me")
        return [
            self._search_notification(
                item,
                kind="pr",
                title=f"PR #{item['number']}: {item['title']}",
                body="Open pull request involving you",
                icon_hint=SUBJECT_ICONS["PullRequest"],
                priority=Priority.HIGH,
            )
            for item in self._filter_search(items, selected, pull_requests=True)
        ]

    async def fetch_issues(self, token: str, selected: frozenset[str]) -> list[Notification]:
        items = await self._search(token, "is:issue is:open involves:@me")
        return [
            self._search_notification(
                item,
                kind="issue",
                title=f"Issue #{item['number']}: {item['title']}",
                body="Open issue involving you",
                icon_hint=SUBJECT_ICONS["Issue"],
                priority=Priority.NORMAL,
            )
            for item in self._filter_search(items, selected, pull_requests=False)
        ]

    @staticmethod
    def _filter_search(
        items: list[dict[str, Any]], selected: frozenset[str], *, pull_requests: bool
    ) -> list[dict[str, Any]]:
        result = []
        for item in items:
            if ("pull_request" in item) != pull_requests:
                continue
            repo = repository_from_api_url(item.get("repository_url", ""))
            if selected and repo not in selected:
                continue
            result.append(item)
        return result[:MAX_SEARCH_RESULTS]

    def _search_notification(
        self, item: dict[str, Any], *, kind: str, title: str, body: str, icon_hint: str, priority: Priority
    ) -> Notification:
        repo = repository_from_api_url(item.get("repository_url", ""))
        return Notification(
            id=f"gh-{kind}-{item['node_id']}",
            provider=self.provider,
            title=title,
            subtitle=repo,
            body=body,
            timestamp=parse_timestamp(item.get("updated_at")) or self._now(),
            target_url=item.get("html_url"),
            icon_hint=icon_hint,
            priority=priority,
            group_key=repo,
        )

    # ==================== Default-branch commits ====================

    @cached("_repo_cache", key_func=lambda self, token, account: f"repos:{account}")
    async def participating_repositories(self, token: str, account: str) -> list[dict[str, Any]]:
        """Repositories the account owns, collaborates on or belongs to via an org."""

        async def fetch_page(page: int) -> list[dict[str, Any]]:
            return await self.http.get_json(
                f"{API_URL}/user/repos",
                token,
                params={
                    "type": "all",
                    "sort": "updated",
                    "direction": "desc",
                    "per_page": PAGE_SIZE,
                    "page": page,
                },
                headers=GITHUB_ACCEPT,
            )

        return await collect_pages(fetch_page)

    async def fetch_commit_updates(
        self, token: str, account: str, selected: frozenset[str]
    ) -> list[Notification]:
        """Emit one item per watched repository whose default branch moved.

        A repository seen for the first time only records its head SHA.
        The baseline is pruned to the watched set on every call.
        """
        repos = await self.participating_repositories(token, account)
        if selected:
            repos = [r for r in repos if r["full_name"] in selected]
        else:
            repos = repos[:MAX_WATCHED_REPOS]
        if not repos:
            if self.settings.commit_baseline:
                self.settings.save_commit_baseline({})
            return []

        baseline = self.settings.commit_baseline
        results = []
        for repo in repos:
            name = repo["full_name"]
            try:
                commit = await self._latest_commit(token, name, repo.get("default_branch") or "main")
            except WorkfeedError as e:
                logger.debug(f"Skipping {name} head lookup: {e}")
                continue

            sha = commit["sha"]
            previous = baseline.get(name)
            baseline[name] = sha
            if previous is None or previous == sha:
                continue
            results.append(self._commit_notification(repo, commit))

        watched = {r["full_name"] for r in repos}
        self.settings.save_commit_baseline({k: v for k, v in baseline.items() if k in watched})
        return results

    async def _latest_commit(self, token: str, full_name: str, branch: str) -> dict[str, Any]:
        return await self.http.get_json(
            f"{API_URL}/repos/{full_name}/commits/{quote(branch, safe='')}",
            token,
            headers=GITHUB_ACCEPT,
        )

    def _commit_notification(self, repo: dict[str, Any], commit: dict[str, Any]) -> Notification:
        name = repo["full_name"]
        details = commit.get("commit") or {}
        message = (details.get("message") or "").strip()
        author = details.get("author") or {}
        return Notification(
            id=f"gh-commit-{name}-{commit['sha']}",
            provider=self.provider,
            title=f"{name} default branch updated",
            subtitle=f"Latest on {repo.get('default_branch') or 'main'}",
            body=message.splitlines()[0] if message else "",
            timestamp=parse_timestamp(author.get("date")) or self._now(),
            target_url=commit.get("html_url"),
            icon_hint=COMMIT_ICON,
            priority=Priority.NORMAL,
            group_key=name,
        )
