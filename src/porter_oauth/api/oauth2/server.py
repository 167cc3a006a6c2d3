# OAuth2 Authorization Server.
# Created: 2026-10-18
#
# Authorization code flow with optional PKCE (RFC 7636), refresh tokens,
# revocation (RFC 7009), introspection (RFC 7662) and userinfo.
#
# Public methods return (result, error) pairs. error is an OAuthError that the
# HTTP layer renders as {"error", "error_description"} with its status code.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from porter_oauth.api.oauth2.models import (
    AccessToken,
    AuthorizationGrant,
    OAuthClient,
    RefreshToken,
    utcnow,
)
from porter_oauth.api.oauth2.profiles import StaticUserProfileStore, UserProfileStore
from porter_oauth.api.oauth2.scopes import SCOPE_READ, format_scope, parse_scope
from porter_oauth.api.oauth2.storage import InMemoryTokenStore, TokenStore
from porter_oauth.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)
CODE_TTL = timedelta(minutes=10)

ACCESS_TOKEN_PREFIX = "pat_"
REFRESH_TOKEN_PREFIX = "prt_"
PKCE_METHODS = ("S256", "plain")

Clock = Callable[[], datetime]
SubjectResolver = Callable[[AuthorizationGrant], str]


@dataclass(frozen=True)
class OAuthError:
    """Protocol-level error returned to the client as JSON."""

    error: str
    description: str
    status_code: int = 400

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


def generate_subject(grant: AuthorizationGrant) -> str:
    """Mint a random end-user identity.

    There is no login session to bind to, so every exchange gets a new subject.
    """
    return f"user_{secrets.token_hex(12)}"


def compute_code_challenge(code_verifier: str, method: str) -> str:
    """PKCE transform: S256 = BASE64URL(SHA256(verifier)), plain = verifier."""
    if method == "plain":
        return code_verifier
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def mask_token(value: str) -> str:
    return f"{value[:8]}..." if value else ""


def _invalid_grant(description: str) -> OAuthError:
    return OAuthError("invalid_grant", description)


class AuthorizationServer:
    """OAuth2 authorization server backed by a TokenStore."""

    def __init__(
        self,
        storage: TokenStore | None = None,
        *,
        clients: Iterable[OAuthClient] = (),
        profiles: UserProfileStore | None = None,
        audit: AuditLogger | None = None,
        clock: Clock = utcnow,
        subject_resolver: SubjectResolver = generate_subject,
        access_token_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_token_ttl: timedelta = REFRESH_TOKEN_TTL,
        code_ttl: timedelta = CODE_TTL,
        rotate_refresh_tokens: bool = False,
        require_pkce: bool = False,
    ):
        self.storage = storage or InMemoryTokenStore()
        self.profiles = profiles or StaticUserProfileStore()
        self.audit = audit or AuditLogger()
        self._clients: dict[str, OAuthClient] = {c.client_id: c for c in clients}
        self._clock = clock
        self._resolve_subject = subject_resolver
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.code_ttl = code_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.require_pkce = require_pkce

    @classmethod
    def from_settings(cls, settings: Any) -> AuthorizationServer:
        """Build a server (store, profiles, audit, client) from Settings."""
        from porter_oauth.api.oauth2.profiles import HttpUserProfileStore
        from porter_oauth.api.oauth2.storage import JsonFileTokenStore

        storage: TokenStore
        if settings.token_store_path is not None:
            storage = JsonFileTokenStore(settings.token_store_path)
        else:
            storage = InMemoryTokenStore()

        profiles: UserProfileStore
        if settings.profile_service_url:
            profiles = HttpUserProfileStore(settings.profile_service_url)
        else:
            profiles = StaticUserProfileStore()

        client = OAuthClient(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            allowed_scopes=parse_scope(settings.allowed_scopes),
            client_name=settings.client_name,
        )
        return cls(
            storage,
            clients=[client],
            profiles=profiles,
            audit=AuditLogger(settings.audit_log_path),
            access_token_ttl=timedelta(seconds=settings.access_token_ttl),
            refresh_token_ttl=timedelta(seconds=settings.refresh_token_ttl),
            code_ttl=timedelta(seconds=settings.code_ttl),
            rotate_refresh_tokens=settings.rotate_refresh_tokens,
            require_pkce=settings.require_pkce,
        )

    def now(self) -> datetime:
        return self._clock()

    @property
    def expires_in(self) -> int:
        return int(self.access_token_ttl.total_seconds())

    # -- clients -------------------------------------------------------------

    def register_client(self, client: OAuthClient) -> None:
        self._clients[client.client_id] = client

    def get_client(self, client_id: str | None) -> OAuthClient | None:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def scopes_supported(self) -> list[str]:
        seen: dict[str, None] = {}
        for client in self._clients.values():
            for scope in client.allowed_scopes:
                seen.setdefault(scope, None)
        return list(seen)

    def authenticate_client(
        self, client_id: str | None, client_secret: str | None
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        """Check client_id + client_secret against the registry."""
        client = self.get_client(client_id)
        if client is None or not client_secret or not hmac.compare_digest(
            client.client_secret.encode(), client_secret.encode()
        ):
            self.audit.record(
                "client_auth_failed",
                client_id or "",
                status="rejected",
                severity=AuditSeverity.WARNING,
            )
            return None, OAuthError("invalid_client", "Invalid client credentials", 401)
        return client, None

    # -- authorization endpoint ---------------------------------------------

    def authorize(
        self,
        response_type: str | None,
        client_id: str | None,
        redirect_uri: str | None,
        scope: str | None = None,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> tuple[AuthorizationGrant | None, OAuthError | None]:
        """Validate an authorization request and store a new grant.

        Returns (grant, error). Errors are never turned into redirects, so a
        mismatched redirect_uri can never receive a code.
        """
        if response_type != "code":
            return None, OAuthError(
                "unsupported_response_type", "Only authorization code flow is supported"
            )

        client = self.get_client(client_id)
        if client is None:
            return None, OAuthError("invalid_client", "Invalid client ID")

        if redirect_uri != client.redirect_uri:
            return None, OAuthError("invalid_redirect_uri", "Invalid redirect URI")

        requested = parse_scope(scope) or client.allowed_scopes
        unknown = [s for s in requested if s not in client.allowed_scopes]
        if unknown:
            return None, OAuthError(
                "invalid_scope", f"Scope not allowed for this client: {format_scope(unknown)}"
            )

        if code_challenge:
            code_challenge_method = code_challenge_method or "plain"
            if code_challenge_method not in PKCE_METHODS:
                return None, OAuthError(
                    "invalid_request", "Unsupported code_challenge_method"
                )
        elif self.require_pkce:
            return None, OAuthError("invalid_request", "code_challenge is required")
        else:
            code_challenge_method = None

        now = self.now()
        grant = AuthorizationGrant(
            code=secrets.token_urlsafe(32),
            client_id=client.client_id,
            redirect_uri=client.redirect_uri,
            scopes=requested,
            expires_at=now + self.code_ttl,
            state=state or None,
            code_challenge=code_challenge or None,
            code_challenge_method=code_challenge_method,
            created_at=now,
        )
        self.storage.save_grant(grant)
        self.audit.record(
            "grant_issued",
            client.client_id,
            scope=format_scope(requested),
            pkce=grant.code_challenge_method,
        )
        logger.info("Authorization code issued for %s: %s", client.client_id, mask_token(grant.code))
        return grant, None

    @staticmethod
    def build_redirect(grant: AuthorizationGrant) -> str:
        """redirect_uri with code (and state) merged into its query string."""
        parts = urlsplit(grant.redirect_uri)
        query = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k not in ("code", "state")
        ]
        query.append(("code", grant.code))
        if grant.state:
            query.append(("state", grant.state))
        return urlunsplit(parts._replace(query=urlencode(query)))

    # -- token endpoint ------------------------------------------------------

    def exchange(
        self,
        code: str | None,
        client_id: str | None,
        client_secret: str | None,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Redeem an authorization code for an access/refresh token pair."""
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        if not code:
            return None, OAuthError("invalid_request", "code is required")

        grant = self.storage.get_grant(code)
        if grant is None:
            return None, _invalid_grant("Invalid or expired authorization code")

        now = self.now()
        if grant.is_expired(now):
            self.storage.delete_grant(code)
            return None, _invalid_grant("Authorization code has expired")

        if grant.consumed:
            self._record_replay(grant)
            return None, _invalid_grant("Authorization code has already been used")

        if grant.client_id != client.client_id:
            return None, _invalid_grant("Authorization code was issued to another client")

        if redirect_uri and redirect_uri != grant.redirect_uri:
            return None, _invalid_grant("redirect_uri does not match the authorization request")

        # Compare-and-set: only one concurrent redemption can win.
        if not self.storage.consume_grant(code):
            self._record_replay(grant)
            return None, _invalid_grant("Authorization code has already been used")

        if grant.code_challenge:
            if not code_verifier:
                return None, _invalid_grant("Code verifier is required for PKCE")
            expected = compute_code_challenge(
                code_verifier, grant.code_challenge_method or "plain"
            )
            if not hmac.compare_digest(expected.encode(), grant.code_challenge.encode()):
                return None, _invalid_grant("Invalid code verifier")

        subject = self._resolve_subject(grant)
        access = self._issue_access_token(subject, client.client_id, grant.scopes, now)
        refresh = RefreshToken(
            token=f"{REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
            access_token=access.token,
            subject=subject,
            client_id=client.client_id,
            scopes=grant.scopes,
            expires_at=now + self.refresh_token_ttl,
            created_at=now,
        )
        self.storage.save_refresh_token(refresh)

        self.audit.record(
            "token_issued", client.client_id, scope=format_scope(grant.scopes), sub=subject
        )
        logger.info("Access token issued for %s: %s", client.client_id, mask_token(access.token))

        return {
            "access_token": access.token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
            "refresh_token": refresh.token,
            "scope": format_scope(grant.scopes),
        }, None

    def refresh(
        self,
        refresh_token: str | None,
        client_id: str | None,
        client_secret: str | None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Issue a fresh access token from a refresh token.

        The refresh token keeps its value unless rotation is enabled, in which
        case it is replaced and the new value is returned.
        """
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        if not refresh_token:
            return None, OAuthError("invalid_request", "refresh_token is required")

        record = self.storage.get_refresh_token(refresh_token)
        if record is None:
            return None, _invalid_grant("Invalid refresh token")

        now = self.now()
        if record.is_expired(now):
            self.storage.delete_refresh_token(refresh_token)
            return None, _invalid_grant("Refresh token has expired")

        if record.client_id != client.client_id:
            return None, _invalid_grant("Refresh token was issued to another client")

        access = self._issue_access_token(record.subject, record.client_id, record.scopes, now)
        result = {
            "access_token": access.token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
            "scope": format_scope(record.scopes),
        }

        if self.rotate_refresh_tokens:
            if not self.storage.delete_refresh_token(record.token):
                self.storage.delete_access_token(access.token)
                return None, _invalid_grant("Invalid refresh token")
            rotated = RefreshToken(
                token=f"{REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
                access_token=access.token,
                subject=record.subject,
                client_id=record.client_id,
                scopes=record.scopes,
                expires_at=record.expires_at,
                created_at=now,
            )
            self.storage.save_refresh_token(rotated)
            result["refresh_token"] = rotated.token
        elif not self.storage.update_refresh_pointer(record.token, access.token):
            # Revoked between lookup and update.
            self.storage.delete_access_token(access.token)
            return None, _invalid_grant("Invalid refresh token")

        self.audit.record(
            "token_refreshed", client.client_id, rotated=self.rotate_refresh_tokens
        )
        logger.info("Access token refreshed for %s: %s", client.client_id, mask_token(access.token))
        return result, None

    def _issue_access_token(
        self, subject: str, client_id: str, scopes: tuple[str, ...], now: datetime
    ) -> AccessToken:
        access = AccessToken(
            token=f"{ACCESS_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
            subject=subject,
            client_id=client_id,
            scopes=scopes,
            expires_at=now + self.access_token_ttl,
            created_at=now,
        )
        self.storage.save_access_token(access)
        return access

    def _record_replay(self, grant: AuthorizationGrant) -> None:
        logger.warning("Replayed authorization code for %s", grant.client_id)
        self.audit.record(
            "grant_replayed",
            grant.client_id,
            status="rejected",
            severity=AuditSeverity.ALERT,
        )

    # -- token checks ------------------------------------------------------

    def authenticate_access_token(
        self, token: str
    ) -> tuple[AccessToken | None, str | None]:
        """Look up a bearer token.

        Returns (record, None) when live, otherwise (None, "invalid") or
        (None, "expired"). Expired tokens are evicted.
        """
        record = self.storage.get_access_token(token)
        if record is None:
            return None, "invalid"
        if record.is_expired(self.now()):
            self.storage.delete_access_token(token)
            return None, "expired"
        return record, None

    def introspect(self, token: str, token_type_hint: str | None = None) -> dict[str, Any]:
        """RFC 7662 introspection.

        Unknown and expired tokens both produce exactly {"active": False}.
        """
        now = self.now()
        lookups = [self._introspect_access, self._introspect_refresh]
        if token_type_hint == "refresh_token":
            lookups.reverse()
        for lookup in lookups:
            found, info = lookup(token, now)
            if found:
                return info
        return {"active": False}

    def _introspect_access(self, token: str, now: datetime) -> tuple[bool, dict[str, Any]]:
        record = self.storage.get_access_token(token)
        if record is None:
            return False, {}
        if record.is_expired(now):
            return True, {"active": False}
        return True, {
            "active": True,
            "scope": format_scope(record.scopes),
            "client_id": record.client_id,
            "token_type": "access_token",
            "exp": int(record.expires_at.timestamp()),
            "iat": int(record.created_at.timestamp()),
            "sub": record.subject,
        }

    def _introspect_refresh(self, token: str, now: datetime) -> tuple[bool, dict[str, Any]]:
        record = self.storage.get_refresh_token(token)
        if record is None:
            return False, {}
        if record.is_expired(now):
            return True, {"active": False}
        return True, {
            "active": True,
            "scope": format_scope(record.scopes),
            "client_id": record.client_id,
            "token_type": "refresh_token",
            "exp": int(record.expires_at.timestamp()),
            "iat": int(record.created_at.timestamp()),
        }

    async def userinfo(self, token: str | None) -> tuple[dict | None, OAuthError | None]:
        """Identity claims for the subject of a token carrying the read scope."""
        if not token:
            return None, OAuthError("invalid_token", "Access token required", 401)

        record, reason = self.authenticate_access_token(token)
        if record is None:
            description = (
                "Access token has expired" if reason == "expired" else "Invalid access token"
            )
            return None, OAuthError("invalid_token", description, 401)

        if SCOPE_READ not in record.scopes:
            return None, OAuthError(
                "insufficient_scope", "Token does not have required scope", 403
            )

        profile = await self.profiles.fetch_profile(record.subject)
        if profile is None:
            return None, OAuthError("user_not_found", "User profile not found", 404)

        return {
            "sub": record.subject,
            "name": profile.display_name,
            "email": profile.email or f"{record.subject}@example.com",
            "role": profile.role,
            "preferences": profile.preferences,
            "updated_at": int(self.now().timestamp()),
        }, None

    # -- revocation ----------------------------------------------------------

    def revoke(
        self,
        token: str | None,
        client_id: str | None,
        client_secret: str | None,
        token_type_hint: str | None = None,
    ) -> tuple[bool, OAuthError | None]:
        """Delete an access or refresh token owned by the calling client.

        Revoking a refresh token also removes the access token it points at.
        Unknown tokens return (False, None).
        """
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return False, error
        if not token:
            return False, OAuthError("invalid_request", "token is required")

        revokers = [self._revoke_access, self._revoke_refresh]
        if token_type_hint == "refresh_token":
            revokers.reverse()
        for revoker in revokers:
            if revoker(token, client.client_id):
                self.audit.record("token_revoked", client.client_id)
                return True, None
        return False, None

    def _revoke_access(self, token: str, client_id: str) -> bool:
        record = self.storage.get_access_token(token)
        if record is None or record.client_id != client_id:
            return False
        return self.storage.delete_access_token(token)

    def _revoke_refresh(self, token: str, client_id: str) -> bool:
        record = self.storage.get_refresh_token(token)
        if record is None or record.client_id != client_id:
            return False
        self.storage.delete_access_token(record.access_token)
        return self.storage.delete_refresh_token(token)


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    if _server is None:
        from porter_oauth.config import get_settings

        set_oauth_server(AuthorizationServer.from_settings(get_settings()))
    return _server


def set_oauth_server(server: AuthorizationServer) -> None:
    """Install *server* as the instance every route resolves."""
    global _server
    from porter_oauth import lifecycle

    _server = server
    lifecycle.register("oauth_server", reset=reset_oauth_server)


def reset_oauth_server() -> None:
    global _server
    _server = None
