"""Per-provider OAuth parameters.

Client ids and secrets come from the configuration provider; the rest is
fixed by each provider's documented OAuth 2.0 endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlparse

from workfeed.core.config import Settings
from workfeed.errors import UnsupportedProviderError
from workfeed.models import Provider


class TokenStyle(str, Enum):
    """Request shape for the token endpoint."""

    # JSON body, client secret in the body (GitHub)
    JSON = "json"
    # HTTP Basic client credentials, JSON body (Notion)
    BASIC_JSON = "basic_json"
    # application/x-www-form-urlencoded per RFC 6749 (Microsoft, Google)
    FORM = "form"


@dataclass(frozen=True)
class ProviderConfig:
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str
    scopes: str
    redirect_uri: str
    token_style: TokenStyle = TokenStyle.FORM
    use_pkce: bool = False
    tokens_expire: bool = True
    extra_authorize_params: dict[str, str] = field(default_factory=dict)
    profile_url: str | None = None

    @property
    def callback_scheme(self) -> str:
        return urlparse(self.redirect_uri).scheme

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)


def github_config(client_id: str, client_secret: str, redirect_uri: str) -> ProviderConfig:
    return ProviderConfig(
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        client_id=client_id,
        client_secret=client_secret,
        scopes="notifications read:user repo",
        redirect_uri=redirect_uri,
        token_style=TokenStyle.JSON,
        tokens_expire=False,
        profile_url="https://api.github.com/user",
    )


def microsoft_config(client_id: str, client_secret: str, redirect_uri: str) -> ProviderConfig:
    return ProviderConfig(
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        client_id=client_id,
        client_secret=client_secret,
        scopes="Chat.Read ChannelMessage.Read.All offline_access",
        redirect_uri=redirect_uri,
        token_style=TokenStyle.FORM,
        use_pkce=True,
    )


def notion_config(client_id: str, client_secret: str, redirect_uri: str) -> ProviderConfig:
    return ProviderConfig(
        authorize_url="https://api.notion.com/v1/oauth/authorize",
        token_url="https://api.notion.com/v1/oauth/token",
        client_id=client_id,
        client_secret=client_secret,
        scopes="",
        redirect_uri=redirect_uri,
        token_style=TokenStyle.BASIC_JSON,
        tokens_expire=False,
        extra_authorize_params={"owner": "user"},
    )


def google_config(client_id: str, client_secret: str, redirect_uri: str) -> ProviderConfig:
    return ProviderConfig(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        client_id=client_id,
        client_secret=client_secret,
        scopes="https://www.googleapis.com/auth/calendar.readonly",
        redirect_uri=redirect_uri,
        token_style=TokenStyle.FORM,
        use_pkce=True,
        # Google only issues a refresh token for offline access
        extra_authorize_params={"access_type": "offline", "prompt": "consent"},
    )


def config_for(provider: Provider, settings: Settings) -> ProviderConfig:
    """Build the OAuth parameters for *provider* from application settings."""
    redirect = settings.oauth_redirect_uri
    if provider is Provider.GITHUB:
        return github_config(settings.github_client_id, settings.github_client_secret, redirect)
    if provider is Provider.TEAMS:
        return microsoft_config(settings.teams_client_id, settings.teams_client_secret, redirect)
    if provider is Provider.NOTION:
        return notion_config(settings.notion_client_id, settings.notion_client_secret, redirect)
    if provider is Provider.GOOGLE_CALENDAR:
        return google_config(settings.google_client_id, settings.google_client_secret, redirect)
    raise UnsupportedProviderError()
