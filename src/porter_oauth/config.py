# Porter OAuth configuration.
# Created: 2026-10-18
#
# Values come from PORTER_OAUTH_* environment variables or a .env file.

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["read", "write", "book"]


class Settings(BaseSettings):
    """Runtime settings for the authorization server."""

    model_config = SettingsConfigDict(
        env_prefix="PORTER_OAUTH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Registered client
    client_id: str = "porter-flight-booking"
    client_secret: str = "change-me"
    client_name: str = "Porter Flight Booking"
    redirect_uri: str = "https://chat.openai.com/aip/porter/oauth/callback"
    allowed_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    # Lifetimes (seconds)
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 2_592_000
    code_ttl: int = 600
    cleanup_interval: float = 3600.0

    # Behaviour toggles
    rotate_refresh_tokens: bool = False
    require_pkce: bool = False

    # Collaborators and persistence
    token_store_path: Path | None = None
    profile_service_url: str | None = None
    audit_log_path: Path | None = None

    # HTTP surface
    issuer: str = "http://localhost:8888"
    cors_allowed_origins: list[str] = Field(default_factory=list)
    auth_rate_limit_per_minute: int = 60

    log_level: str = "INFO"

    @classmethod
    def load(cls) -> Settings:
        """Read settings from the environment."""
        return cls()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
        logger.debug("Loaded settings for client %s", _settings.client_id)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
