# OAuth2 data models.
# Created: 2026-10-18

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OAuthClient:
    """Registered OAuth2 client. One redirect URI, fixed scope set."""

    client_id: str
    client_secret: str
    redirect_uri: str
    allowed_scopes: tuple[str, ...]
    client_name: str = ""


@dataclass
class AuthorizationGrant:
    """Short-lived authorization code awaiting exchange."""

    code: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    expires_at: datetime
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None  # "S256" or "plain"
    created_at: datetime = field(default_factory=utcnow)
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class AccessToken:
    """Bearer credential presented to protected resources."""

    token: str
    subject: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class RefreshToken:
    """Long-lived credential pointing at the current access token."""

    token: str
    access_token: str
    subject: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
