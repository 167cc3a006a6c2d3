# Shared FastAPI dependencies for protected resources.
# Created: 2026-10-18

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request

from porter_oauth.api.errors import OAuthTokenError
from porter_oauth.api.oauth2.scopes import has_scopes, parse_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthIdentity:
    """Caller identity resolved from a valid access token."""

    sub: str
    client_id: str
    scopes: tuple[str, ...]
    issued_at: datetime
    expires_at: datetime


def get_bearer_token(request: Request) -> str | None:
    """Extract the token from ``Authorization: Bearer <token>``."""
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        return None
    return auth[7:].strip() or None


def get_request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID") or f"req_{secrets.token_hex(6)}"


def require_scopes(*scopes: str):
    """FastAPI dependency factory: require a bearer token holding every scope.

    Usage::

        @router.post("/book-flight")
        async def book(identity: OAuthIdentity = Depends(require_scopes(*SCOPES_BOOK))):
            ...

    Raises OAuthTokenError (rendered by the app's exception handler) with
    MISSING_OAUTH_TOKEN, INVALID_OAUTH_TOKEN or EXPIRED_OAUTH_TOKEN (401) or
    INSUFFICIENT_OAUTH_SCOPES (403). On success the identity is also stored on
    ``request.state.oauth_identity``.
    """
    required = parse_scope(list(scopes))

    async def _check(request: Request) -> OAuthIdentity:
        from porter_oauth.api.oauth2.server import get_oauth_server

        request_id = get_request_id(request)
        path = request.url.path

        token = get_bearer_token(request)
        if token is None:
            logger.info("[%s] Missing bearer token on %s", request_id, path)
            raise OAuthTokenError(
                401,
                "MISSING_OAUTH_TOKEN",
                "Valid OAuth access token is required",
                request_id=request_id,
            )

        record, reason = get_oauth_server().authenticate_access_token(token)
        if reason == "expired":
            logger.info("[%s] Expired bearer token on %s", request_id, path)
            raise OAuthTokenError(
                401,
                "EXPIRED_OAUTH_TOKEN",
                "OAuth access token has expired",
                request_id=request_id,
            )
        if record is None:
            logger.info("[%s] Invalid bearer token on %s", request_id, path)
            raise OAuthTokenError(
                401,
                "INVALID_OAUTH_TOKEN",
                "Invalid or expired OAuth access token",
                request_id=request_id,
            )

        if not has_scopes(record.scopes, required):
            logger.info(
                "[%s] Insufficient scopes on %s: required %s, got %s",
                request_id,
                path,
                required,
                record.scopes,
            )
            raise OAuthTokenError(
                403,
                "INSUFFICIENT_OAUTH_SCOPES",
                "OAuth token does not have required scopes",
                required_scopes=list(required),
                token_scopes=list(record.scopes),
                request_id=request_id,
            )

        identity = OAuthIdentity(
            sub=record.subject,
            client_id=record.client_id,
            scopes=record.scopes,
            issued_at=record.created_at,
            expires_at=record.expires_at,
        )
        request.state.oauth_identity = identity
        return identity

    return _check
