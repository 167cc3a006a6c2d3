# OAuth2 grant and token storage.
# Created: 2026-10-18
#
# TokenStore is the repository the endpoints depend on. InMemoryTokenStore
# keeps everything in process; JsonFileTokenStore additionally persists tokens
# so refresh tokens survive restarts. Grants always stay in memory (10 min TTL).
#
# Expiry is never enforced here: callers compare expires_at at lookup time.

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from porter_oauth.api.oauth2.models import AccessToken, AuthorizationGrant, RefreshToken

logger = logging.getLogger(__name__)


class TokenStoreError(Exception):
    """The backing store could not read or write a record."""


class TokenStore(ABC):
    """Mapping from opaque strings to grants, access tokens and refresh tokens.

    Every method must be individually atomic. ``consume_grant`` is the only
    compare-and-set operation and is what makes codes single-use under races.
    """

    # -- grants --------------------------------------------------------------

    @abstractmethod
    def save_grant(self, grant: AuthorizationGrant) -> None: ...

    @abstractmethod
    def get_grant(self, code: str) -> AuthorizationGrant | None: ...

    @abstractmethod
    def consume_grant(self, code: str) -> bool:
        """Mark the grant consumed if it exists and is not yet consumed.

        Returns True only for the single caller that flipped the flag.
        """

    @abstractmethod
    def delete_grant(self, code: str) -> bool: ...

    # -- access tokens -------------------------------------------------------

    @abstractmethod
    def save_access_token(self, token: AccessToken) -> None: ...

    @abstractmethod
    def get_access_token(self, token: str) -> AccessToken | None: ...

    @abstractmethod
    def delete_access_token(self, token: str) -> bool: ...

    # -- refresh tokens ------------------------------------------------------

    @abstractmethod
    def save_refresh_token(self, token: RefreshToken) -> None: ...

    @abstractmethod
    def get_refresh_token(self, token: str) -> RefreshToken | None: ...

    @abstractmethod
    def update_refresh_pointer(self, token: str, access_token: str) -> bool:
        """Point an existing refresh token at a new access token."""

    @abstractmethod
    def delete_refresh_token(self, token: str) -> bool: ...

    # -- snapshots for the sweeper ------------------------------------------

    @abstractmethod
    def list_grants(self) -> list[AuthorizationGrant]: ...

    @abstractmethod
    def list_access_tokens(self) -> list[AccessToken]: ...

    @abstractmethod
    def list_refresh_tokens(self) -> list[RefreshToken]: ...

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group several mutations; persistent stores write once on exit."""
        yield


class InMemoryTokenStore(TokenStore):
    """Thread-safe dict-backed store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._grants: dict[str, AuthorizationGrant] = {}
        self._access: dict[str, AccessToken] = {}
        self._refresh: dict[str, RefreshToken] = {}
        self._batch_depth = 0
        self._dirty = False

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._lock:
            self._batch_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._batch_depth -= 1
                flush = self._batch_depth == 0 and self._dirty
                if flush:
                    self._dirty = False
            if flush:
                self._on_tokens_changed()

    def save_grant(self, grant: AuthorizationGrant) -> None:
        with self._lock:
            self._grants[grant.code] = grant

    def get_grant(self, code: str) -> AuthorizationGrant | None:
        with self._lock:
            return self._grants.get(code)

    def consume_grant(self, code: str) -> bool:
        with self._lock:
            grant = self._grants.get(code)
            if grant is None or grant.consumed:
                return False
            grant.consumed = True
            return True

    def delete_grant(self, code: str) -> bool:
        with self._lock:
            return self._grants.pop(code, None) is not None

    def save_access_token(self, token: AccessToken) -> None:
        with self._lock:
            self._access[token.token] = token
        self._changed()

    def get_access_token(self, token: str) -> AccessToken | None:
        with self._lock:
            return self._access.get(token)

    def delete_access_token(self, token: str) -> bool:
        with self._lock:
            removed = self._access.pop(token, None) is not None
        if removed:
            self._changed()
        return removed

    def save_refresh_token(self, token: RefreshToken) -> None:
        with self._lock:
            self._refresh[token.token] = token
        self._changed()

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self._lock:
            return self._refresh.get(token)

    def update_refresh_pointer(self, token: str, access_token: str) -> bool:
        with self._lock:
            record = self._refresh.get(token)
            if record is None:
                return False
            record.access_token = access_token
        self._changed()
        return True

    def delete_refresh_token(self, token: str) -> bool:
        with self._lock:
            removed = self._refresh.pop(token, None) is not None
        if removed:
            self._changed()
        return removed

    def list_grants(self) -> list[AuthorizationGrant]:
        with self._lock:
            return list(self._grants.values())

    def list_access_tokens(self) -> list[AccessToken]:
        with self._lock:
            return list(self._access.values())

    def list_refresh_tokens(self) -> list[RefreshToken]:
        with self._lock:
            return list(self._refresh.values())

    def _changed(self) -> None:
        with self._lock:
            if self._batch_depth:
                self._dirty = True
                return
        self._on_tokens_changed()

    def _on_tokens_changed(self) -> None:
        """Hook for persistent subclasses."""


def _access_to_dict(token: AccessToken) -> dict[str, Any]:
    return {
        "token": token.token,
        "subject": token.subject,
        "client_id": token.client_id,
        "scopes": list(token.scopes),
        "expires_at": token.expires_at.isoformat(),
        "created_at": token.created_at.isoformat(),
    }


def _refresh_to_dict(token: RefreshToken) -> dict[str, Any]:
    return {
        "token": token.token,
        "access_token": token.access_token,
        "subject": token.subject,
        "client_id": token.client_id,
        "scopes": list(token.scopes),
        "expires_at": token.expires_at.isoformat(),
        "created_at": token.created_at.isoformat(),
    }


class JsonFileTokenStore(InMemoryTokenStore):
    """In-memory store that mirrors access and refresh tokens to a JSON file.

    The file is rewritten after every token mutation, or once at the end of a
    ``batch()`` block, and chmod'ed to 0600.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self._write_lock = threading.Lock()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            for entry in data.get("access_tokens", []):
                token = AccessToken(
                    token=entry["token"],
                    subject=entry["subject"],
                    client_id=entry["client_id"],
                    scopes=tuple(entry["scopes"]),
                    expires_at=datetime.fromisoformat(entry["expires_at"]),
                    created_at=datetime.fromisoformat(entry["created_at"]),
                )
                self._access[token.token] = token
            for entry in data.get("refresh_tokens", []):
                refresh = RefreshToken(
                    token=entry["token"],
                    access_token=entry["access_token"],
                    subject=entry["subject"],
                    client_id=entry["client_id"],
                    scopes=tuple(entry["scopes"]),
                    expires_at=datetime.fromisoformat(entry["expires_at"]),
                    created_at=datetime.fromisoformat(entry["created_at"]),
                )
                self._refresh[refresh.token] = refresh
            logger.debug(
                "Loaded %d access / %d refresh tokens from %s",
                len(self._access),
                len(self._refresh),
                self._path,
            )
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
            logger.warning("Failed to load OAuth tokens from %s: %s", self._path, exc)

    def _on_tokens_changed(self) -> None:
        # Snapshot and write under one lock so the file never regresses to an
        # older snapshot.
        with self._write_lock:
            with self._lock:
                data = {
                    "access_tokens": [_access_to_dict(t) for t in self._access.values()],
                    "refresh_tokens": [_refresh_to_dict(t) for t in self._refresh.values()],
                }
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(json.dumps(data, indent=2))
            except OSError as exc:
                raise TokenStoreError(f"Cannot write token file {self._path}") from exc
            try:
                self._path.chmod(0o600)
            except OSError:
                logger.debug("Could not chmod %s", self._path)
