"""Shared fixtures: in-memory stores, a fixed clock, a scripted consent flow."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from workfeed.repositories import (
    CredentialStore,
    MemorySecretBackend,
    MemorySettingsBackend,
    SettingsStore,
)
from workfeed.services import HttpClient

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedPresenter:
    """Answers the consent flow with a redirect built from the authorize URL."""

    def __init__(self, respond: Callable[[dict[str, str], str], str] | None = None):
        self.respond = respond or self.approve
        self.authorize_urls: list[str] = []

    @staticmethod
    def approve(params: dict[str, str], redirect_uri: str) -> str:
        return f"{redirect_uri}?code=auth-code&state={params['state']}"

    async def present(self, authorize_url: str, redirect_uri: str) -> str:
        self.authorize_urls.append(authorize_url)
        params = {k: v[0] for k, v in parse_qs(urlparse(authorize_url).query).items()}
        return self.respond(params, redirect_uri)


class Router:
    """Minimal httpx.MockTransport handler keyed by (method, url prefix)."""

    def __init__(self):
        self.routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, prefix: str, response) -> None:
        handler = response if callable(response) else (lambda request, r=response: r)
        # Longest prefix wins; among equal prefixes the latest registration
        self.routes.insert(0, (method, prefix, handler))
        self.routes.sort(key=lambda r: len(r[1]), reverse=True)

    def json(self, method: str, prefix: str, payload, status: int = 200) -> None:
        self.add(method, prefix, lambda request: httpx.Response(status, json=payload))

    def calls(self, prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        for method, prefix, handler in self.routes:
            if request.method == method and url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, text=f"no route for {request.method} {url}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore(MemorySecretBackend())


@pytest.fixture
def settings_store() -> SettingsStore:
    return SettingsStore(MemorySettingsBackend())


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
async def http(router):
    client = HttpClient(transport=httpx.MockTransport(router))
    yield client
    await client.close()


@pytest.fixture
def presenter() -> ScriptedPresenter:
    return ScriptedPresenter()
