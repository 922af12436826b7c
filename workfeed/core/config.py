"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "workwidget"

# First existing file wins
ENV_FILE_CANDIDATES = (
    Path.cwd() / ".env",
    CONFIG_DIR / ".env",
)


def find_env_file() -> Path | None:
    """Return the first .env file found in the known locations."""
    for path in ENV_FILE_CANDIDATES:
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """Application settings loaded from a .env file, then the environment"""

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub OAuth
    github_client_id: str = Field(default="", description="GitHub OAuth App client ID")
    github_client_secret: str = Field(default="", description="GitHub OAuth App client secret")

    # Microsoft Teams OAuth (public client, secret optional)
    teams_client_id: str = Field(default="", description="Microsoft Entra application ID")
    teams_client_secret: str = Field(default="", description="Microsoft Entra client secret")

    # Notion OAuth
    notion_client_id: str = Field(default="", description="Notion integration client ID")
    notion_client_secret: str = Field(default="", description="Notion integration secret")

    # Google Calendar OAuth
    google_client_id: str = Field(default="", description="Google OAuth client ID")
    google_client_secret: str = Field(default="", description="Google OAuth client secret")

    # OAuth consent flow
    oauth_redirect_uri: str = Field(
        default="http://127.0.0.1:4343/oauth/callback",
        description="Redirect URI registered with every provider",
    )
    oauth_timeout_seconds: int = Field(default=120, description="Consent flow timeout")

    # Networking
    http_timeout_seconds: float = Field(default=30.0, description="Provider API timeout")

    # Local storage
    keyring_service: str = Field(default="com.workwidget.app", description="Keyring service")
    data_dir: Path = Field(default=CONFIG_DIR, description="Directory for settings.json")

    # Local API for the presentation layer
    api_host: str = Field(default="127.0.0.1", description="API server host")
    api_port: int = Field(default=8765, description="API server port")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # The loaded file is consulted first; the process environment is the fallback
        return init_settings, dotenv_settings, env_settings, file_secret_settings

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
