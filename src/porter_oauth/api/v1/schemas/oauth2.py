# OAuth2 schemas.
# Created: 2026-10-18

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OAuthErrorResponse(BaseModel):
    """RFC 6749 error body."""

    error: str
    error_description: str


class TokenRequest(BaseModel):
    """Token exchange or refresh request (JSON or form-encoded)."""

    model_config = ConfigDict(extra="ignore")

    grant_type: str | None = None
    code: str | None = None
    code_verifier: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response. refresh_token is absent on plain refreshes."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str


class IntrospectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    token_type_hint: str | None = None


class IntrospectionResponse(BaseModel):
    """RFC 7662 response. Inactive tokens carry only ``active``."""

    active: bool
    scope: str | None = None
    client_id: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None
    sub: str | None = None


class RevokeRequest(BaseModel):
    """Token revocation request."""

    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    token_type_hint: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class RevokeResponse(BaseModel):
    revoked: bool


class UserInfoResponse(BaseModel):
    sub: str
    name: str
    email: str
    role: str | None = None
    preferences: dict[str, Any] = Field(default_factory=dict)
    updated_at: int


class ServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    introspection_endpoint: str
    revocation_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str] = ["code"]
    grant_types_supported: list[str] = ["authorization_code", "refresh_token"]
    code_challenge_methods_supported: list[str] = ["S256", "plain"]
    token_endpoint_auth_methods_supported: list[str] = [
        "client_secret_post",
        "client_secret_basic",
    ]
