"""OAuth engine: authorization-code flow, token exchange and refresh.

Each authorization attempt moves through
``idle -> awaiting_user_consent -> exchanging_code -> authorized | failed``.
One attempt per provider may be in flight; the caller prevents a second.

Token lifetimes:
- Providers whose tokens never expire (GitHub, Notion) are returned as-is.
- A bundle without an expiry is reused as-is, refresh token or not.
- Otherwise a token expiring within ``REFRESH_BUFFER`` is refreshed first,
  so no request starts with a token that may expire mid-flight.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from workfeed.errors import (
    AccessDeniedError,
    AuthError,
    NoAuthorizationCodeError,
    NoRefreshTokenError,
    NotAuthenticatedError,
    RefreshFailedError,
    StateMismatchError,
    StorageError,
    TokenExchangeError,
    UnsupportedProviderError,
    UpstreamError,
    UserCancelledError,
)
from workfeed.models import AccountIdentity, Provider, TokenBundle
from workfeed.repositories import CredentialStore, SettingsStore

from .http_client import HttpClient
from .oauth_config import ProviderConfig, TokenStyle
from .presenter import AuthorizationPresenter

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)
ERROR_BODY_LIMIT = 500


class AuthorizationState(str, Enum):
    IDLE = "idle"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    EXCHANGING_CODE = "exchanging_code"
    AUTHORIZED = "authorized"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# PKCE helpers
# ------------------------------------------------------------------


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 random bytes, base64url without padding."""
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier))."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def build_authorize_url(
    config: ProviderConfig, state: str, code_challenge: str | None = None
) -> str:
    params: dict[str, str] = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "state": state,
        "response_type": "code",
    }
    if config.scopes:
        params["scope"] = config.scopes
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    params.update(config.extra_authorize_params)
    return f"{config.authorize_url}?{urlencode(params)}"


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


class OAuthEngine:
    """Runs consent flows and hands out valid access tokens.

    Stored bundles are written only by the flow that owns them: a finished
    authorization, or the refresh of that same (provider, account) slot.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        settings: SettingsStore,
        presenter: AuthorizationPresenter,
        http: HttpClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.credentials = credentials
        self.settings = settings
        self.presenter = presenter
        self.http = http
        self._now = clock
        self._attempts: dict[Provider, AuthorizationState] = {}
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    def attempt_state(self, provider: Provider) -> AuthorizationState:
        return self._attempts.get(provider, AuthorizationState.IDLE)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize(self, provider: Provider, config: ProviderConfig) -> TokenBundle:
        """Run the consent flow and persist the resulting bundle."""
        if provider.supports_multiple_accounts:
            bundle, _ = await self._authorize_account(provider, config)
            return bundle

        bundle = await self._run_flow(provider, config)
        self.credentials.save_tokens(provider, bundle)
        self.settings.mark_authenticated(provider, True)
        logger.info(f"{provider.display_name} connected")
        return bundle

    async def authorize_multi_account(
        self, provider: Provider, config: ProviderConfig
    ) -> AccountIdentity:
        """Run the consent flow, resolve the account, store it and make it active."""
        if not provider.supports_multiple_accounts:
            raise UnsupportedProviderError(f"{provider.display_name} has a single account")
        _, identity = await self._authorize_account(provider, config)
        return identity

    async def _authorize_account(
        self, provider: Provider, config: ProviderConfig
    ) -> tuple[TokenBundle, AccountIdentity]:
        bundle = await self._run_flow(provider, config)
        try:
            identity = await self.resolve_identity(config, bundle.access_token)
        except Exception:
            self._attempts[provider] = AuthorizationState.FAILED
            logger.warning(f"{provider.display_name} identity lookup failed; account not stored")
            raise

        self.credentials.save_tokens(provider, bundle, identity.account_id)
        self.credentials.add_account(provider, identity.account_id)
        self.settings.set_active_account(identity.account_id)
        self.settings.mark_authenticated(provider, True)
        logger.info(f"{provider.display_name} account '{identity.account_id}' connected")
        return bundle, identity

    async def _run_flow(self, provider: Provider, config: ProviderConfig) -> TokenBundle:
        if not provider.uses_oauth:
            raise UnsupportedProviderError()

        state = secrets.token_urlsafe(24)
        verifier = generate_code_verifier() if config.use_pkce else None
        challenge = generate_code_challenge(verifier) if verifier else None
        authorize_url = build_authorize_url(config, state, challenge)

        self._attempts[provider] = AuthorizationState.AWAITING_USER_CONSENT
        try:
            try:
                callback_url = await self.presenter.present(authorize_url, config.redirect_uri)
            except OSError as e:
                raise AuthError(f"Could not start authorization listener: {e}") from e

            code = self._extract_code(callback_url, state)

            self._attempts[provider] = AuthorizationState.EXCHANGING_CODE
            bundle = await self._exchange_code(code, config, verifier)
        except UserCancelledError:
            self._attempts[provider] = AuthorizationState.IDLE
            logger.info(f"{provider.display_name} authorization cancelled")
            raise
        except Exception as e:
            self._attempts[provider] = AuthorizationState.FAILED
            logger.warning(f"{provider.display_name} authorization failed: {e}")
            raise

        self._attempts[provider] = AuthorizationState.AUTHORIZED
        return bundle

    @staticmethod
    def _extract_code(callback_url: str, expected_state: str) -> str:
        params = parse_qs(urlparse(callback_url).query)

        # Checked before anything else: a foreign state means a forged callback
        if _first(params, "state") != expected_state:
            raise StateMismatchError()

        error = _first(params, "error")
        if error == "access_denied":
            raise UserCancelledError()
        if error:
            raise NoAuthorizationCodeError(_first(params, "error_description") or error)

        code = _first(params, "code")
        if not code:
            raise NoAuthorizationCodeError()
        return code

    async def _exchange_code(
        self, code: str, config: ProviderConfig, verifier: str | None
    ) -> TokenBundle:
        request: dict[str, Any] = {"headers": {"Accept": "application/json"}}

        if config.token_style is TokenStyle.JSON:
            body = {
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
            }
            if config.redirect_uri:
                body["redirect_uri"] = config.redirect_uri
            if verifier:
                body["code_verifier"] = verifier
            request["json"] = body
        elif config.token_style is TokenStyle.BASIC_JSON:
            request["json"] = {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
            }
            request["auth"] = (config.client_id, config.client_secret)
        else:
            data = {
                "client_id": config.client_id,
                "code": code,
                "redirect_uri": config.redirect_uri,
                "grant_type": "authorization_code",
            }
            if config.client_secret:
                data["client_secret"] = config.client_secret
            if verifier:
                data["code_verifier"] = verifier
            request["data"] = data

        try:
            response = await self.http.raw.post(config.token_url, **request)
        except httpx.TimeoutException as e:
            raise TokenExchangeError("timeout") from e
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"network error: {e}") from e

        if not response.is_success:
            logger.error(f"Failed to exchange code: {response.status_code}")
            raise TokenExchangeError(response.text[:ERROR_BODY_LIMIT] or "unknown")

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError(response.text[:ERROR_BODY_LIMIT] or "invalid response") from e

        return self._bundle_from_response(payload, TokenExchangeError)

    def _bundle_from_response(
        self,
        payload: dict[str, Any],
        error_cls: type[TokenExchangeError] | type[RefreshFailedError],
        previous_refresh_token: str | None = None,
    ) -> TokenBundle:
        access_token = payload.get("access_token")
        if not access_token:
            # GitHub answers 200 with an error body
            detail = payload.get("error_description") or payload.get("error") or "empty token"
            raise error_cls(str(detail))

        expires_in = payload.get("expires_in")
        expires_at = self._now() + timedelta(seconds=int(expires_in)) if expires_in else None

        return TokenBundle(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
        )

    async def resolve_identity(self, config: ProviderConfig, access_token: str) -> AccountIdentity:
        """One authenticated profile lookup to get a stable account id."""
        if not config.profile_url:
            raise UnsupportedProviderError("No profile endpoint configured")
        try:
            profile = await self.http.get_json(
                config.profile_url, access_token, headers={"Accept": "application/json"}
            )
        except (UpstreamError, AccessDeniedError) as e:
            raise TokenExchangeError(f"profile lookup failed: {e}") from e

        login = profile.get("login") if isinstance(profile, dict) else None
        if not login:
            raise TokenExchangeError("profile lookup returned no login")
        return AccountIdentity(account_id=login.lower(), display_name=profile.get("name") or login)

    # ------------------------------------------------------------------
    # Valid access tokens
    # ------------------------------------------------------------------

    def resolve_account(self, provider: Provider) -> str | None:
        """Active account, else the first registered one (which becomes active)."""
        if not provider.supports_multiple_accounts:
            return None
        accounts = self.credentials.list_accounts(provider)
        active = self.settings.active_account
        if active and active in accounts:
            return active
        if accounts:
            self.settings.set_active_account(accounts[0])
            return accounts[0]
        return None

    async def get_valid_access_token(
        self, provider: Provider, config: ProviderConfig, account: str | None = None
    ) -> str:
        if account is None and provider.supports_multiple_accounts:
            account = self.resolve_account(provider)
            if account is None:
                raise NotAuthenticatedError()

        bundle = self.credentials.get_tokens(provider, account)
        if bundle is None:
            raise NotAuthenticatedError()
        if not self._needs_refresh(bundle, config):
            return bundle.access_token

        async with self._refresh_lock(provider, account):
            # Double-check after acquiring lock
            bundle = self.credentials.get_tokens(provider, account)
            if bundle is None:
                raise NotAuthenticatedError()
            if not self._needs_refresh(bundle, config):
                return bundle.access_token
            if not bundle.refresh_token:
                raise NoRefreshTokenError()

            refreshed = await self._refresh(bundle, config)
            self.credentials.save_tokens(provider, refreshed, account)
            logger.info(f"Refreshed {provider.display_name} access token")
            return refreshed.access_token

    def _needs_refresh(self, bundle: TokenBundle, config: ProviderConfig) -> bool:
        if not config.tokens_expire:
            return False
        # Without a known expiry the token is reused until a 401 says otherwise
        if bundle.expires_at is None:
            return False
        return bundle.expires_at <= self._now() + REFRESH_BUFFER

    def _refresh_lock(self, provider: Provider, account: str | None) -> asyncio.Lock:
        key = f"{provider.value}:{account or ''}"
        if key not in self._refresh_locks:
            self._refresh_locks[key] = asyncio.Lock()
        return self._refresh_locks[key]

    async def _refresh(self, bundle: TokenBundle, config: ProviderConfig) -> TokenBundle:
        data = {
            "client_id": config.client_id,
            "refresh_token": bundle.refresh_token or "",
            "grant_type": "refresh_token",
        }
        if config.client_secret:
            data["client_secret"] = config.client_secret

        try:
            response = await self.http.raw.post(
                config.token_url, data=data, headers={"Accept": "application/json"}
            )
        except httpx.TimeoutException as e:
            raise RefreshFailedError("timeout") from e
        except httpx.HTTPError as e:
            raise RefreshFailedError(f"network error: {e}") from e

        if not response.is_success:
            logger.error(f"Token refresh failed: HTTP {response.status_code}")
            raise RefreshFailedError(response.text[:ERROR_BODY_LIMIT] or "unknown")

        try:
            payload = response.json()
        except ValueError as e:
            raise RefreshFailedError("invalid response") from e

        return self._bundle_from_response(payload, RefreshFailedError, bundle.refresh_token)

    # ------------------------------------------------------------------
    # Legacy single-slot migration
    # ------------------------------------------------------------------

    async def migrate_legacy_credentials(
        self, provider: Provider, config: ProviderConfig
    ) -> AccountIdentity | None:
        """Move a single-slot bundle of a multi-account provider into its account slot.

        Runs once at startup; on any failure the legacy slot is left in place
        and the migration is attempted again on the next start.
        """
        if not provider.supports_multiple_accounts:
            return None
        try:
            legacy = self.credentials.get_tokens(provider)
        except StorageError as e:
            logger.warning(f"Skipping {provider.display_name} credential migration: {e}")
            return None
        if legacy is None:
            return None

        try:
            identity = await self.resolve_identity(config, legacy.access_token)
        except AuthError as e:
            logger.warning(f"{provider.display_name} legacy credential migration deferred: {e}")
            return None

        self.credentials.save_tokens(provider, legacy, identity.account_id)
        self.credentials.add_account(provider, identity.account_id)
        self.credentials.delete_tokens(provider)
        if self.settings.active_account is None:
            self.settings.set_active_account(identity.account_id)
        logger.info(f"Migrated {provider.display_name} credentials to '{identity.account_id}'")
        return identity

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    def disconnect(self, provider: Provider) -> None:
        """Delete every stored credential of *provider*. Idempotent."""
        if provider.supports_multiple_accounts:
            self.disconnect_all(provider)
            return
        self.credentials.delete_tokens(provider)
        self.settings.mark_authenticated(provider, False)
        self._attempts.pop(provider, None)
        logger.info(f"{provider.display_name} disconnected")

    def disconnect_account(self, provider: Provider, account: str) -> None:
        account = account.lower()
        self.credentials.delete_tokens(provider, account)
        self.credentials.remove_account(provider, account)

        remaining = self.credentials.list_accounts(provider)
        if self.settings.active_account == account:
            self.settings.set_active_account(remaining[0] if remaining else None)
        if not remaining:
            self.settings.mark_authenticated(provider, False)
            self._clear_provider_state(provider)
        logger.info(f"{provider.display_name} account '{account}' disconnected")

    def disconnect_all(self, provider: Provider) -> None:
        for account in self.credentials.list_accounts(provider):
            self.credentials.delete_tokens(provider, account)
        self.credentials.clear_accounts(provider)
        self.credentials.delete_tokens(provider)
        if provider.supports_multiple_accounts:
            self.settings.set_active_account(None)
        self.settings.mark_authenticated(provider, False)
        self._attempts.pop(provider, None)
        self._clear_provider_state(provider)
        logger.info(f"{provider.display_name} disconnected (all accounts)")

    def _clear_provider_state(self, provider: Provider) -> None:
        """Best-effort cleanup of per-provider selection state."""
        if provider is not Provider.GITHUB:
            return
        try:
            self.settings.clear_commit_baseline()
            self.settings.clear_repository_selection()
        except StorageError as e:
            logger.warning(f"Could not clear {provider.display_name} selection state: {e}")
