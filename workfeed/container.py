"""Constructs every collaborator once at startup.

Stores and engines are passed explicitly to whatever needs them; nothing
reaches for a module-level singleton except through ``get_container``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import httpx

from workfeed.core.config import Settings
from workfeed.errors import UnsupportedProviderError, WorkfeedError
from workfeed.models import Provider
from workfeed.repositories import (
    CredentialStore,
    JsonFileSettingsBackend,
    KeyringSecretBackend,
    SecretBackend,
    SettingsBackend,
    SettingsStore,
)
from workfeed.services import (
    AuthorizationPresenter,
    HttpClient,
    LoopbackAuthorizationPresenter,
    NotificationAggregator,
    OAuthEngine,
    ProviderConfig,
    config_for,
)
from workfeed.services.oauth import utcnow
from workfeed.services.providers import (
    CalendarSource,
    GitHubProvider,
    GoogleCalendarProvider,
    NotificationProvider,
    NotionProvider,
    SystemCalendarProvider,
    TeamsProvider,
    UnavailableCalendarSource,
)

logger = logging.getLogger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings,
        *,
        secret_backend: SecretBackend | None = None,
        settings_backend: SettingsBackend | None = None,
        presenter: AuthorizationPresenter | None = None,
        calendar_source: CalendarSource | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.credentials = CredentialStore(
            secret_backend or KeyringSecretBackend(settings.keyring_service)
        )
        self.settings_store = SettingsStore(
            settings_backend or JsonFileSettingsBackend(settings.settings_file)
        )
        self.http = HttpClient(timeout=settings.http_timeout_seconds, transport=transport)
        self.presenter = presenter or LoopbackAuthorizationPresenter(
            timeout=settings.oauth_timeout_seconds
        )
        self.oauth = OAuthEngine(
            self.credentials, self.settings_store, self.presenter, self.http, clock
        )
        self.provider_configs: dict[Provider, ProviderConfig] = {
            p: config_for(p, settings) for p in Provider if p.uses_oauth
        }

        cfg = self.provider_configs
        store = self.settings_store
        self.providers: list[NotificationProvider] = [
            TeamsProvider(self.http, self.oauth, cfg[Provider.TEAMS], clock),
            GitHubProvider(self.http, self.oauth, cfg[Provider.GITHUB], store, clock),
            NotionProvider(self.http, self.oauth, cfg[Provider.NOTION], clock),
            SystemCalendarProvider(calendar_source or UnavailableCalendarSource(), store, clock),
            GoogleCalendarProvider(self.http, self.oauth, cfg[Provider.GOOGLE_CALENDAR], store, clock),
        ]
        self.aggregator = NotificationAggregator(
            self.providers, store, clock=clock, http=self.http
        )

    def config(self, provider: Provider) -> ProviderConfig:
        if provider not in self.provider_configs:
            raise UnsupportedProviderError()
        return self.provider_configs[provider]

    async def startup(self) -> None:
        """Migrate legacy credentials and reconcile authenticated flags."""
        for provider in Provider:
            if provider.supports_multiple_accounts:
                try:
                    await self.oauth.migrate_legacy_credentials(
                        provider, self.provider_configs[provider]
                    )
                except WorkfeedError as e:
                    logger.warning(f"{provider.display_name} migration skipped: {e}")
        self.settings_store.sync_authentication(self.credentials)

    async def close(self) -> None:
        await self.aggregator.close()


_container: Container | None = None


def init_container(settings: Settings, **overrides) -> Container:
    global _container
    _container = Container(settings, **overrides)
    return _container


def get_container() -> Container:
    if _container is None:
        raise RuntimeError("Container not initialized")
    return _container
