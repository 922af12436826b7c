"""Tests for the OAuth engine: consent flow, exchange shapes, refresh, accounts."""

import asyncio
import base64
import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import ScriptedPresenter
from workfeed.errors import (
    NoRefreshTokenError,
    NotAuthenticatedError,
    RefreshFailedError,
    StateMismatchError,
    TokenExchangeError,
    UnsupportedProviderError,
    UserCancelledError,
)
from workfeed.models import Provider, TokenBundle
from workfeed.services.oauth import (
    AuthorizationState,
    OAuthEngine,
    build_authorize_url,
    generate_code_challenge,
    generate_code_verifier,
)
from workfeed.services.oauth_config import (
    github_config,
    google_config,
    microsoft_config,
    notion_config,
)

REDIRECT = "http://127.0.0.1:4343/oauth/callback"
MS_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
NOTION_TOKEN_URL = "https://api.notion.com/v1/oauth/token"

teams = microsoft_config("ms-client", "", REDIRECT)
github = github_config("gh-client", "gh-secret", REDIRECT)
notion = notion_config("notion-client", "notion-secret", REDIRECT)
google = google_config("g-client", "g-secret", REDIRECT)


@pytest.fixture
def engine(credentials, settings_store, presenter, http, clock):
    return OAuthEngine(credentials, settings_store, presenter, http, clock)


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# ============================================
# PKCE and authorize URL
# ============================================


def test_code_challenge_matches_rfc7636_example():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_code_verifier_is_unpadded_base64url_of_32_bytes():
    verifier = generate_code_verifier()
    assert len(verifier) == 43
    assert "=" not in verifier
    assert len(base64.urlsafe_b64decode(verifier + "=")) == 32
    assert generate_code_verifier() != verifier


def test_authorize_url_carries_state_challenge_and_extra_params():
    url = build_authorize_url(google, "nonce", "challenge")
    params = query(url)
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params["state"] == "nonce"
    assert params["code_challenge"] == "challenge"
    assert params["code_challenge_method"] == "S256"
    assert params["access_type"] == "offline"
    assert params["response_type"] == "code"


# ============================================
# Consent flow
# ============================================


async def test_state_mismatch_fails_the_attempt(engine, router, credentials):
    engine.presenter = ScriptedPresenter(lambda p, r: f"{r}?code=abc&state=forged")
    router.json("POST", MS_TOKEN_URL, {"access_token": "never"})

    with pytest.raises(StateMismatchError):
        await engine.authorize(Provider.TEAMS, teams)

    assert router.calls(MS_TOKEN_URL) == []
    assert credentials.get_tokens(Provider.TEAMS) is None
    assert engine.attempt_state(Provider.TEAMS) is AuthorizationState.FAILED


async def test_missing_state_is_a_mismatch(engine):
    engine.presenter = ScriptedPresenter(lambda p, r: f"{r}?code=abc")
    with pytest.raises(StateMismatchError):
        await engine.authorize(Provider.TEAMS, teams)


async def test_access_denied_is_a_cancellation(engine, settings_store):
    engine.presenter = ScriptedPresenter(lambda p, r: f"{r}?error=access_denied&state={p['state']}")

    with pytest.raises(UserCancelledError):
        await engine.authorize(Provider.TEAMS, teams)

    assert engine.attempt_state(Provider.TEAMS) is AuthorizationState.IDLE
    assert not settings_store.is_authenticated(Provider.TEAMS)


async def test_system_calendar_has_no_oauth_flow(engine):
    with pytest.raises(UnsupportedProviderError):
        await engine.authorize(Provider.SYSTEM_CALENDAR, teams)


async def test_form_exchange_with_pkce(engine, router, presenter, credentials, settings_store, clock):
    router.json(
        "POST",
        MS_TOKEN_URL,
        {"access_token": "ms-access", "refresh_token": "ms-refresh", "expires_in": 3600},
    )

    bundle = await engine.authorize(Provider.TEAMS, teams)

    request = router.calls(MS_TOKEN_URL)[0]
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    body = form(request)
    assert body["grant_type"] == "authorization_code"
    assert body["code"] == "auth-code"
    assert body["client_id"] == "ms-client"
    assert "client_secret" not in body
    sent = query(presenter.authorize_urls[0])
    assert generate_code_challenge(body["code_verifier"]) == sent["code_challenge"]

    assert bundle == TokenBundle("ms-access", "ms-refresh", clock.now + timedelta(seconds=3600))
    assert credentials.get_tokens(Provider.TEAMS) == bundle
    assert settings_store.is_authenticated(Provider.TEAMS)
    assert settings_store.is_enabled(Provider.TEAMS)
    assert engine.attempt_state(Provider.TEAMS) is AuthorizationState.AUTHORIZED


async def test_basic_auth_json_exchange(engine, router, credentials):
    router.json("POST", NOTION_TOKEN_URL, {"access_token": "secret_abc", "workspace_name": "W"})

    bundle = await engine.authorize(Provider.NOTION, notion)

    request = router.calls(NOTION_TOKEN_URL)[0]
    expected = base64.b64encode(b"notion-client:notion-secret").decode()
    assert request.headers["authorization"] == f"Basic {expected}"
    assert json.loads(request.content) == {
        "grant_type": "authorization_code",
        "code": "auth-code",
        "redirect_uri": REDIRECT,
    }
    assert bundle == TokenBundle("secret_abc")


async def test_exchange_error_reports_response_body(engine, router):
    router.add("POST", MS_TOKEN_URL, httpx.Response(400, text="invalid_grant: code expired"))

    with pytest.raises(TokenExchangeError) as exc_info:
        await engine.authorize(Provider.TEAMS, teams)

    assert exc_info.value.detail == "invalid_grant: code expired"
    assert engine.attempt_state(Provider.TEAMS) is AuthorizationState.FAILED


async def test_github_error_payload_with_200_fails_exchange(engine, router):
    router.json(
        "POST",
        GITHUB_TOKEN_URL,
        {"error": "bad_verification_code", "error_description": "The code is incorrect"},
    )

    with pytest.raises(TokenExchangeError, match="The code is incorrect"):
        await engine.authorize_multi_account(Provider.GITHUB, github)


# ============================================
# Multi-account
# ============================================


def github_routes(router, login="Octocat", token="gh-token"):
    router.json("POST", GITHUB_TOKEN_URL, {"access_token": token, "token_type": "bearer"})
    router.json("GET", "https://api.github.com/user", {"login": login, "name": "The Octocat"})


async def test_authorize_multi_account_registers_and_activates(
    engine, router, credentials, settings_store
):
    github_routes(router)

    identity = await engine.authorize_multi_account(Provider.GITHUB, github)

    assert identity.account_id == "octocat"
    assert identity.display_name == "The Octocat"
    exchange = json.loads(router.calls(GITHUB_TOKEN_URL)[0].content)
    assert exchange["client_secret"] == "gh-secret"
    assert exchange["code"] == "auth-code"
    profile = router.calls("https://api.github.com/user")[0]
    assert profile.headers["authorization"] == "Bearer gh-token"

    assert credentials.list_accounts(Provider.GITHUB) == ["octocat"]
    assert credentials.get_tokens(Provider.GITHUB, "octocat") == TokenBundle("gh-token")
    # Only the per-account slot is written
    assert credentials.get_tokens(Provider.GITHUB) is None
    assert settings_store.active_account == "octocat"
    assert settings_store.is_authenticated(Provider.GITHUB)


async def test_failed_profile_lookup_fails_the_attempt(engine, router, credentials, settings_store):
    router.json("POST", GITHUB_TOKEN_URL, {"access_token": "gh-token", "token_type": "bearer"})
    router.add("GET", "https://api.github.com/user", httpx.Response(500, text="boom"))

    with pytest.raises(TokenExchangeError):
        await engine.authorize_multi_account(Provider.GITHUB, github)

    assert engine.attempt_state(Provider.GITHUB) is AuthorizationState.FAILED
    assert credentials.list_accounts(Provider.GITHUB) == []
    assert settings_store.active_account is None
    assert not settings_store.is_authenticated(Provider.GITHUB)


async def test_single_account_provider_rejects_multi_account_flow(engine):
    with pytest.raises(UnsupportedProviderError):
        await engine.authorize_multi_account(Provider.NOTION, notion)


async def test_get_token_falls_back_to_first_registered_account(engine, credentials, settings_store):
    credentials.save_tokens(Provider.GITHUB, TokenBundle("first"), "alice")
    credentials.add_account(Provider.GITHUB, "alice")
    credentials.save_tokens(Provider.GITHUB, TokenBundle("second"), "bob")
    credentials.add_account(Provider.GITHUB, "bob")

    assert await engine.get_valid_access_token(Provider.GITHUB, github) == "first"
    assert settings_store.active_account == "alice"

    settings_store.set_active_account("bob")
    assert await engine.get_valid_access_token(Provider.GITHUB, github) == "second"


async def test_migrates_legacy_single_slot(engine, router, credentials, settings_store):
    router.json("GET", "https://api.github.com/user", {"login": "Octocat"})
    credentials.save_tokens(Provider.GITHUB, TokenBundle("legacy"))

    identity = await engine.migrate_legacy_credentials(Provider.GITHUB, github)

    assert identity.account_id == "octocat"
    assert credentials.get_tokens(Provider.GITHUB) is None
    assert credentials.get_tokens(Provider.GITHUB, "octocat") == TokenBundle("legacy")
    assert settings_store.active_account == "octocat"
    assert await engine.migrate_legacy_credentials(Provider.GITHUB, github) is None


async def test_failed_migration_keeps_legacy_slot(engine, router, credentials):
    router.add("GET", "https://api.github.com/user", httpx.Response(401))
    credentials.save_tokens(Provider.GITHUB, TokenBundle("legacy"))

    assert await engine.migrate_legacy_credentials(Provider.GITHUB, github) is None
    assert credentials.get_tokens(Provider.GITHUB) == TokenBundle("legacy")


# ============================================
# Valid access token
# ============================================


async def test_not_authenticated_without_bundle(engine):
    with pytest.raises(NotAuthenticatedError):
        await engine.get_valid_access_token(Provider.TEAMS, teams)
    with pytest.raises(NotAuthenticatedError):
        await engine.get_valid_access_token(Provider.GITHUB, github)


async def test_token_far_from_expiry_is_returned_without_network(engine, router, credentials, clock):
    credentials.save_tokens(
        Provider.TEAMS, TokenBundle("current", "refresh", clock.now + timedelta(seconds=400))
    )

    assert await engine.get_valid_access_token(Provider.TEAMS, teams) == "current"
    assert router.requests == []


async def test_token_inside_buffer_is_refreshed(engine, router, credentials, clock):
    credentials.save_tokens(
        Provider.TEAMS, TokenBundle("stale", "refresh-1", clock.now + timedelta(seconds=200))
    )
    router.json("POST", MS_TOKEN_URL, {"access_token": "fresh", "expires_in": 3600})

    assert await engine.get_valid_access_token(Provider.TEAMS, teams) == "fresh"

    body = form(router.calls(MS_TOKEN_URL)[0])
    assert body == {"client_id": "ms-client", "refresh_token": "refresh-1", "grant_type": "refresh_token"}
    stored = credentials.get_tokens(Provider.TEAMS)
    # Provider did not rotate the refresh token: the old one is kept
    assert stored == TokenBundle("fresh", "refresh-1", clock.now + timedelta(seconds=3600))


async def test_refresh_sends_client_secret_when_configured(engine, router, credentials, clock):
    credentials.save_tokens(
        Provider.GOOGLE_CALENDAR, TokenBundle("stale", "g-refresh", clock.now - timedelta(minutes=1))
    )
    router.json("POST", "https://oauth2.googleapis.com/token", {"access_token": "g-fresh", "refresh_token": "g-2"})

    assert await engine.get_valid_access_token(Provider.GOOGLE_CALENDAR, google) == "g-fresh"
    assert form(router.requests[0])["client_secret"] == "g-secret"
    assert credentials.get_tokens(Provider.GOOGLE_CALENDAR).refresh_token == "g-2"


async def test_refreshed_token_without_expiry_is_reused(engine, router, credentials, clock):
    credentials.save_tokens(
        Provider.GOOGLE_CALENDAR, TokenBundle("stale", "g-refresh", clock.now - timedelta(minutes=1))
    )
    router.json("POST", "https://oauth2.googleapis.com/token", {"access_token": "g-fresh", "refresh_token": "g-2"})

    tokens = [await engine.get_valid_access_token(Provider.GOOGLE_CALENDAR, google) for _ in range(3)]

    assert tokens == ["g-fresh", "g-fresh", "g-fresh"]
    assert len(router.calls("https://oauth2.googleapis.com/token")) == 1


async def test_bundle_with_refresh_token_but_no_expiry_is_not_refreshed(engine, router, credentials):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("current", "refresh"))

    assert await engine.get_valid_access_token(Provider.TEAMS, teams) == "current"
    assert router.requests == []


async def test_never_expiring_provider_is_not_refreshed(engine, router, credentials, clock):
    credentials.save_tokens(Provider.NOTION, TokenBundle("n", "r", clock.now - timedelta(days=1)))

    assert await engine.get_valid_access_token(Provider.NOTION, notion) == "n"
    assert router.requests == []


async def test_durable_bundle_is_returned_unchanged(engine, router, credentials):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("durable"))

    assert await engine.get_valid_access_token(Provider.TEAMS, teams) == "durable"
    assert router.requests == []


async def test_expiring_bundle_without_refresh_token(engine, credentials, clock):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("old", None, clock.now + timedelta(seconds=30)))

    with pytest.raises(NoRefreshTokenError):
        await engine.get_valid_access_token(Provider.TEAMS, teams)


async def test_refresh_failure_reports_body(engine, router, credentials, clock):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("old", "r", clock.now))
    router.add("POST", MS_TOKEN_URL, httpx.Response(400, text="invalid_grant"))

    with pytest.raises(RefreshFailedError) as exc_info:
        await engine.get_valid_access_token(Provider.TEAMS, teams)

    assert exc_info.value.detail == "invalid_grant"
    assert credentials.get_tokens(Provider.TEAMS).access_token == "old"


async def test_concurrent_callers_share_one_refresh(engine, router, credentials, clock):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("old", "r", clock.now))

    async def slow_refresh(request):
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"access_token": "new", "expires_in": 3600})

    router.add("POST", MS_TOKEN_URL, slow_refresh)

    tokens = await asyncio.gather(
        engine.get_valid_access_token(Provider.TEAMS, teams),
        engine.get_valid_access_token(Provider.TEAMS, teams),
    )

    assert tokens == ["new", "new"]
    assert len(router.calls(MS_TOKEN_URL)) == 1


# ============================================
# Disconnect
# ============================================


def test_disconnect_is_idempotent(engine, credentials, settings_store):
    credentials.save_tokens(Provider.TEAMS, TokenBundle("t"))
    settings_store.mark_authenticated(Provider.TEAMS, True)

    engine.disconnect(Provider.TEAMS)
    engine.disconnect(Provider.TEAMS)

    assert credentials.get_tokens(Provider.TEAMS) is None
    assert not settings_store.is_authenticated(Provider.TEAMS)


def test_disconnect_account_repoints_active(engine, credentials, settings_store):
    for login in ("alice", "bob"):
        credentials.save_tokens(Provider.GITHUB, TokenBundle(login), login)
        credentials.add_account(Provider.GITHUB, login)
    settings_store.set_active_account("alice")
    settings_store.mark_authenticated(Provider.GITHUB, True)

    engine.disconnect_account(Provider.GITHUB, "Alice")

    assert credentials.list_accounts(Provider.GITHUB) == ["bob"]
    assert settings_store.active_account == "bob"
    assert settings_store.is_authenticated(Provider.GITHUB)

    settings_store.save_commit_baseline({"o/r": "abc"})
    engine.disconnect_account(Provider.GITHUB, "bob")

    assert credentials.list_accounts(Provider.GITHUB) == []
    assert settings_store.active_account is None
    assert not settings_store.is_authenticated(Provider.GITHUB)
    assert settings_store.commit_baseline == {}


def test_disconnect_all_clears_every_slot(engine, credentials, settings_store):
    credentials.save_tokens(Provider.GITHUB, TokenBundle("legacy"))
    credentials.save_tokens(Provider.GITHUB, TokenBundle("a"), "alice")
    credentials.add_account(Provider.GITHUB, "alice")
    settings_store.set_active_account("alice")
    settings_store.set_selected_repositories({"o/r"})

    engine.disconnect_all(Provider.GITHUB)
    engine.disconnect_all(Provider.GITHUB)

    assert not credentials.has_credentials(Provider.GITHUB)
    assert credentials.list_accounts(Provider.GITHUB) == []
    assert settings_store.active_account is None
    assert settings_store.selected_repositories == frozenset()
