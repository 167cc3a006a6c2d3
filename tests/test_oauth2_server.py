# Tests for the OAuth2 authorization server logic.
# Created: 2026-10-18

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import (
    CLIENT_ID,
    CLIENT_SECRET,
    REDIRECT_URI,
    TEST_CLIENT,
    issue_code,
    issue_tokens,
    make_pkce_pair,
)
from porter_oauth.api.oauth2.models import AuthorizationGrant, OAuthClient
from porter_oauth.api.oauth2.profiles import UserProfile
from porter_oauth.api.oauth2.server import (
    AuthorizationServer,
    compute_code_challenge,
)


class TestAuthorize:
    def test_creates_grant(self, server, storage):
        grant, error = server.authorize(
            response_type="code",
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            scope="read book",
            state="abc",
        )
        assert error is None
        assert storage.get_grant(grant.code) is grant
        assert grant.scopes == ("read", "book")
        assert grant.state == "abc"
        assert grant.consumed is False
        assert grant.expires_at - grant.created_at == timedelta(minutes=10)

    def test_code_is_long_and_unique(self, server):
        codes = {issue_code(server) for _ in range(20)}
        assert len(codes) == 20
        assert all(len(c) >= 43 for c in codes)

    def test_default_scope_is_client_allowed_set(self, server):
        grant, error = server.authorize("code", CLIENT_ID, REDIRECT_URI)
        assert error is None
        assert grant.scopes == ("read", "write", "book")

    def test_unsupported_response_type_checked_first(self, server):
        _, error = server.authorize("token", "unknown", "https://evil.example.com")
        assert error.error == "unsupported_response_type"
        assert error.status_code == 400

    def test_unknown_client(self, server):
        _, error = server.authorize("code", "unknown", REDIRECT_URI)
        assert error.error == "invalid_client"

    def test_redirect_uri_must_match_exactly(self, server):
        _, error = server.authorize("code", CLIENT_ID, REDIRECT_URI + "/extra")
        assert error.error == "invalid_redirect_uri"

    def test_scope_outside_allowed_set(self, server):
        _, error = server.authorize("code", CLIENT_ID, REDIRECT_URI, scope="read admin")
        assert error.error == "invalid_scope"
        assert "admin" in error.description

    def test_challenge_without_method_defaults_to_plain(self, server):
        grant, error = server.authorize(
            "code", CLIENT_ID, REDIRECT_URI, code_challenge="abc"
        )
        assert error is None
        assert grant.code_challenge_method == "plain"

    def test_unknown_challenge_method(self, server):
        _, error = server.authorize(
            "code", CLIENT_ID, REDIRECT_URI, code_challenge="abc", code_challenge_method="S512"
        )
        assert error.error == "invalid_request"

    def test_pkce_required_by_config(self, storage, clock):
        strict = AuthorizationServer(
            storage, clients=[TEST_CLIENT], clock=clock, require_pkce=True
        )
        _, error = strict.authorize("code", CLIENT_ID, REDIRECT_URI)
        assert error.error == "invalid_request"

    def test_build_redirect_keeps_existing_query(self, server, clock):
        grant = AuthorizationGrant(
            code="the-code",
            client_id=CLIENT_ID,
            redirect_uri="https://agent.example.com/cb?tenant=7",
            scopes=("read",),
            expires_at=clock() + timedelta(minutes=10),
            state="s 1",
        )
        location = server.build_redirect(grant)
        parts = urlsplit(location)
        assert parts.netloc == "agent.example.com"
        assert parse_qs(parts.query) == {"tenant": ["7"], "code": ["the-code"], "state": ["s 1"]}

    def test_build_redirect_omits_missing_state(self, server):
        code = issue_code(server, state=None)
        grant = server.storage.get_grant(code)
        assert "state=" not in server.build_redirect(grant)


class TestExchange:
    def test_s256_success(self, server):
        verifier, challenge = make_pkce_pair()
        code = issue_code(server, challenge=challenge)
        tokens, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET, code_verifier=verifier)
        assert error is None
        assert tokens["access_token"].startswith("pat_")
        assert tokens["refresh_token"].startswith("prt_")
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600
        assert tokens["scope"] == "read book"

    def test_without_pkce(self, server):
        code = issue_code(server)
        tokens, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error is None
        assert tokens["access_token"]

    def test_plain_pkce(self, server):
        code = issue_code(server, challenge="plain-verifier-value", method="plain")
        _, error = server.exchange(
            code, CLIENT_ID, CLIENT_SECRET, code_verifier="plain-verifier-value"
        )
        assert error is None

    def test_wrong_verifier(self, server):
        _, challenge = make_pkce_pair()
        code = issue_code(server, challenge=challenge)
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET, code_verifier="wrong")
        assert error.error == "invalid_grant"
        assert error.description == "Invalid code verifier"

    def test_missing_verifier(self, server):
        _, challenge = make_pkce_pair()
        code = issue_code(server, challenge=challenge)
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"

    def test_failed_verifier_burns_the_code(self, server):
        verifier, challenge = make_pkce_pair()
        code = issue_code(server, challenge=challenge)
        server.exchange(code, CLIENT_ID, CLIENT_SECRET, code_verifier="wrong")
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET, code_verifier=verifier)
        assert error.error == "invalid_grant"

    def test_code_reuse(self, server):
        code = issue_code(server)
        first, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error is None
        second, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert second is None
        assert error.error == "invalid_grant"

    def test_unknown_code(self, server):
        _, error = server.exchange("nonexistent", CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"

    def test_missing_code(self, server):
        _, error = server.exchange(None, CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_request"

    def test_expired_code(self, server, clock, storage):
        code = issue_code(server)
        clock.advance(601)
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"
        assert storage.get_grant(code) is None

    def test_code_at_exact_expiry_is_accepted(self, server, clock):
        code = issue_code(server)
        clock.advance(600)
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error is None

    @pytest.mark.parametrize(
        "client_id,client_secret",
        [(CLIENT_ID, "wrong"), ("other", CLIENT_SECRET), (CLIENT_ID, None), (None, None)],
    )
    def test_bad_client_credentials(self, server, client_id, client_secret):
        code = issue_code(server)
        _, error = server.exchange(code, client_id, client_secret)
        assert error.error == "invalid_client"
        assert error.status_code == 401
        # The code was not burned by the failed authentication.
        _, error = server.exchange(code, CLIENT_ID, CLIENT_SECRET)
        assert error is None

    def test_code_issued_to_other_client(self, server):
        other = OAuthClient("other", "other-secret", "https://other.example.com/cb", ("read",))
        server.register_client(other)
        code = issue_code(server)
        _, error = server.exchange(code, "other", "other-secret")
        assert error.error == "invalid_grant"

    def test_redirect_uri_mismatch(self, server):
        code = issue_code(server)
        _, error = server.exchange(
            code, CLIENT_ID, CLIENT_SECRET, redirect_uri="https://evil.example.com/cb"
        )
        assert error.error == "invalid_grant"

    def test_tokens_stored_with_grant_scopes(self, server, storage):
        tokens = issue_tokens(server, scope="read")
        access = storage.get_access_token(tokens["access_token"])
        refresh = storage.get_refresh_token(tokens["refresh_token"])
        assert access.scopes == ("read",)
        assert refresh.scopes == ("read",)
        assert refresh.access_token == access.token
        assert refresh.subject == access.subject
        assert access.subject.startswith("user_")

    def test_custom_subject_resolver(self, storage, clock):
        custom = AuthorizationServer(
            storage,
            clients=[TEST_CLIENT],
            clock=clock,
            subject_resolver=lambda grant: f"agent:{grant.client_id}",
        )
        tokens = issue_tokens(custom)
        assert storage.get_access_token(tokens["access_token"]).subject == f"agent:{CLIENT_ID}"

    def test_concurrent_redemption_has_single_winner(self, server):
        code = issue_code(server)
        workers = 8
        barrier = threading.Barrier(workers)

        def redeem(_):
            barrier.wait()
            return server.exchange(code, CLIENT_ID, CLIENT_SECRET)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(redeem, range(workers)))

        successes = [r for r, e in results if e is None]
        failures = [e for _, e in results if e is not None]
        assert len(successes) == 1
        assert len(failures) == workers - 1
        assert all(e.error == "invalid_grant" for e in failures)


class TestComputeCodeChallenge:
    def test_rfc7636_appendix_b_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert (
            compute_code_challenge(verifier, "S256")
            == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
        )

    def test_plain(self):
        assert compute_code_challenge("abc", "plain") == "abc"


class TestRefresh:
    def test_refresh_keeps_scope_and_subject(self, server, storage, clock):
        tokens = issue_tokens(server)
        old_access = storage.get_access_token(tokens["access_token"])
        clock.advance(1800)

        result, error = server.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error is None
        assert "refresh_token" not in result
        assert result["access_token"] != tokens["access_token"]
        assert result["scope"] == "read book"
        assert result["expires_in"] == 3600

        new_access = storage.get_access_token(result["access_token"])
        assert new_access.subject == old_access.subject
        assert new_access.scopes == old_access.scopes
        assert new_access.expires_at == clock() + timedelta(hours=1)

    def test_refresh_updates_pointer_not_value(self, server, storage):
        tokens = issue_tokens(server)
        result, _ = server.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        record = storage.get_refresh_token(tokens["refresh_token"])
        assert record is not None
        assert record.access_token == result["access_token"]

    def test_refresh_twice(self, server):
        tokens = issue_tokens(server)
        first, _ = server.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        second, error = server.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error is None
        assert second["access_token"] != first["access_token"]

    def test_expired_refresh_token(self, server, storage, clock):
        tokens = issue_tokens(server)
        clock.advance(timedelta(days=30).total_seconds() + 1)
        _, error = server.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"
        assert storage.get_refresh_token(tokens["refresh_token"]) is None

    def test_unknown_refresh_token(self, server):
        _, error = server.refresh("prt_nope", CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"

    def test_refresh_requires_client_auth(self, server):
        tokens = issue_tokens(server)
        _, error = server.refresh(tokens["refresh_token"], CLIENT_ID, "wrong")
        assert error.error == "invalid_client"

    def test_refresh_token_of_other_client(self, server):
        server.register_client(
            OAuthClient("other", "other-secret", "https://other.example.com/cb", ("read",))
        )
        tokens = issue_tokens(server)
        _, error = server.refresh(tokens["refresh_token"], "other", "other-secret")
        assert error.error == "invalid_grant"

    def test_rotation(self, storage, clock):
        rotating = AuthorizationServer(
            storage, clients=[TEST_CLIENT], clock=clock, rotate_refresh_tokens=True
        )
        tokens = issue_tokens(rotating)
        result, error = rotating.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error is None
        assert result["refresh_token"] != tokens["refresh_token"]
        assert storage.get_refresh_token(tokens["refresh_token"]) is None

        _, error = rotating.refresh(tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error.error == "invalid_grant"
        again, error = rotating.refresh(result["refresh_token"], CLIENT_ID, CLIENT_SECRET)
        assert error is None
        assert again["access_token"]


class TestAccessTokenLifetime:
    def test_valid_until_expiry_then_rejected(self, server, clock):
        tokens = issue_tokens(server)
        clock.advance(3600)
        record, reason = server.authenticate_access_token(tokens["access_token"])
        assert record is not None and reason is None

        clock.advance(1)
        record, reason = server.authenticate_access_token(tokens["access_token"])
        assert record is None
        assert reason == "expired"

    def test_expired_token_is_evicted(self, server, storage, clock):
        tokens = issue_tokens(server)
        clock.advance(3601)
        server.authenticate_access_token(tokens["access_token"])
        assert storage.get_access_token(tokens["access_token"]) is None
        assert server.authenticate_access_token(tokens["access_token"]) == (None, "invalid")


class TestIntrospect:
    def test_active_access_token(self, server, storage, clock):
        tokens = issue_tokens(server)
        record = storage.get_access_token(tokens["access_token"])
        info = server.introspect(tokens["access_token"])
        assert info == {
            "active": True,
            "scope": "read book",
            "client_id": CLIENT_ID,
            "token_type": "access_token",
            "exp": int((clock() + timedelta(hours=1)).timestamp()),
            "iat": int(clock().timestamp()),
            "sub": record.subject,
        }

    def test_active_refresh_token_has_no_sub(self, server):
        tokens = issue_tokens(server)
        info = server.introspect(tokens["refresh_token"])
        assert info["active"] is True
        assert info["token_type"] == "refresh_token"
        assert "sub" not in info

    def test_unknown_and_expired_look_identical(self, server, clock):
        tokens = issue_tokens(server)
        clock.advance(3601)
        assert server.introspect(tokens["access_token"]) == {"active": False}
        assert server.introspect("never-existed") == {"active": False}

    def test_hint_changes_lookup_order_only(self, server):
        tokens = issue_tokens(server)
        info = server.introspect(tokens["access_token"], token_type_hint="refresh_token")
        assert info["token_type"] == "access_token"


class TestRevoke:
    def test_revoke_access_token(self, server):
        tokens = issue_tokens(server)
        revoked, error = server.revoke(tokens["access_token"], CLIENT_ID, CLIENT_SECRET)
        assert error is None and revoked is True
        assert server.introspect(tokens["access_token"]) == {"active": False}

    def test_revoke_refresh_token_drops_current_access_token(self, server):
        tokens = issue_tokens(server)
        revoked, _ = server.revoke(
            tokens["refresh_token"], CLIENT_ID, CLIENT_SECRET, "refresh_token"
        )
        assert revoked is True
        assert server.introspect(tokens["refresh_token"]) == {"active": False}
        assert server.introspect(tokens["access_token"]) == {"active": False}

    def test_revoke_unknown_token(self, server):
        assert server.revoke("nope", CLIENT_ID, CLIENT_SECRET) == (False, None)

    def test_revoke_requires_client_auth(self, server):
        tokens = issue_tokens(server)
        revoked, error = server.revoke(tokens["access_token"], CLIENT_ID, "bad")
        assert revoked is False
        assert error.error == "invalid_client"

    def test_other_client_cannot_revoke(self, server):
        server.register_client(
            OAuthClient("other", "other-secret", "https://other.example.com/cb", ("read",))
        )
        tokens = issue_tokens(server)
        assert server.revoke(tokens["access_token"], "other", "other-secret") == (False, None)
        assert server.introspect(tokens["access_token"])["active"] is True


class _NoProfiles:
    async def fetch_profile(self, subject):
        return None


class TestUserInfo:
    @pytest.mark.asyncio
    async def test_claims(self, server, storage, clock):
        tokens = issue_tokens(server)
        subject = storage.get_access_token(tokens["access_token"]).subject
        claims, error = await server.userinfo(tokens["access_token"])
        assert error is None
        assert claims["sub"] == subject
        assert claims["name"] == "Demo User"
        assert claims["email"] == "demo@example.com"
        assert claims["role"] == "Business Traveler"
        assert claims["preferences"]["tone"] == "professional"
        assert claims["updated_at"] == int(clock().timestamp())

    @pytest.mark.asyncio
    async def test_email_fallback(self, server, storage):
        class _NoEmail:
            async def fetch_profile(self, subject):
                return UserProfile(display_name="Ada")

        server.profiles = _NoEmail()
        tokens = issue_tokens(server)
        subject = storage.get_access_token(tokens["access_token"]).subject
        claims, _ = await server.userinfo(tokens["access_token"])
        assert claims["email"] == f"{subject}@example.com"

    @pytest.mark.asyncio
    async def test_missing_token(self, server):
        _, error = await server.userinfo(None)
        assert (error.error, error.status_code) == ("invalid_token", 401)

    @pytest.mark.asyncio
    async def test_expired_token(self, server, clock):
        tokens = issue_tokens(server)
        clock.advance(3601)
        _, error = await server.userinfo(tokens["access_token"])
        assert error.error == "invalid_token"
        assert error.description == "Access token has expired"

    @pytest.mark.asyncio
    async def test_requires_read_scope(self, server):
        tokens = issue_tokens(server, scope="book")
        _, error = await server.userinfo(tokens["access_token"])
        assert (error.error, error.status_code) == ("insufficient_scope", 403)

    @pytest.mark.asyncio
    async def test_unknown_profile(self, server):
        server.profiles = _NoProfiles()
        tokens = issue_tokens(server)
        _, error = await server.userinfo(tokens["access_token"])
        assert (error.error, error.status_code) == ("user_not_found", 404)


class TestFromSettings:
    def test_builds_client_and_lifetimes(self, tmp_path):
        from porter_oauth.api.oauth2.storage import JsonFileTokenStore
        from porter_oauth.config import Settings

        settings = Settings(
            client_id="cfg-client",
            client_secret="cfg-secret",
            redirect_uri="https://cfg.example.com/cb",
            allowed_scopes=["read", "book"],
            access_token_ttl=60,
            token_store_path=tmp_path / "tokens.json",
        )
        built = AuthorizationServer.from_settings(settings)
        assert isinstance(built.storage, JsonFileTokenStore)
        assert built.expires_in == 60
        client = built.get_client("cfg-client")
        assert client.allowed_scopes == ("read", "book")
        assert built.scopes_supported() == ["read", "book"]
