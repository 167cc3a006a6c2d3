# Shared fixtures for Porter OAuth tests.
# Created: 2026-10-18

import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from porter_oauth import lifecycle
from porter_oauth.api.errors import register_exception_handlers
from porter_oauth.api.oauth2.models import OAuthClient
from porter_oauth.api.oauth2.server import AuthorizationServer, reset_oauth_server
from porter_oauth.api.oauth2.storage import InMemoryTokenStore
from porter_oauth.api.v1 import mount_routers
from porter_oauth.config import reset_settings

CLIENT_ID = "porter-test-agent"
CLIENT_SECRET = "s3cret-value"
REDIRECT_URI = "https://agent.example.com/oauth/callback"

TEST_CLIENT = OAuthClient(
    client_id=CLIENT_ID,
    client_secret=CLIENT_SECRET,
    redirect_uri=REDIRECT_URI,
    allowed_scopes=("read", "write", "book"),
    client_name="Test Agent",
)


class FakeClock:
    """Deterministic clock; call it for the current time, advance() to move on."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_pkce_pair():
    """Generate a PKCE code_verifier and S256 code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def issue_code(server, scope="read book", challenge=None, method="S256", state="xyz"):
    grant, error = server.authorize(
        response_type="code",
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        scope=scope,
        state=state,
        code_challenge=challenge,
        code_challenge_method=method if challenge else None,
    )
    assert error is None
    return grant.code


def issue_tokens(server, scope="read book"):
    verifier, challenge = make_pkce_pair()
    code = issue_code(server, scope=scope, challenge=challenge)
    tokens, error = server.exchange(
        code=code,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        code_verifier=verifier,
    )
    assert error is None
    return tokens


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_oauth_server()
    reset_settings()
    lifecycle.reset_all()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryTokenStore()


@pytest.fixture
def server(storage, clock):
    return AuthorizationServer(storage, clients=[TEST_CLIENT], clock=clock)


@pytest.fixture
def test_app(server, monkeypatch):
    import porter_oauth.api.oauth2.server as mod

    monkeypatch.setattr(mod, "_server", server)
    app = FastAPI()
    register_exception_handlers(app)
    mount_routers(app)
    return app


@pytest.fixture
def client(test_app):
    return TestClient(test_app)
