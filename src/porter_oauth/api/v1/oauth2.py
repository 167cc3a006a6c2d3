# OAuth2 router: authorize, token, refresh, userinfo, introspect, revoke.
# Created: 2026-10-18

from __future__ import annotations

import base64
import binascii
import json
import logging
from urllib.parse import unquote_plus

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from porter_oauth.api.deps import get_bearer_token
from porter_oauth.api.errors import (
    NO_STORE_HEADERS,
    oauth_error_response,
    server_error_response,
)
from porter_oauth.api.oauth2.server import OAuthError, get_oauth_server
from porter_oauth.api.v1.schemas.oauth2 import (
    IntrospectionResponse,
    IntrospectRequest,
    OAuthErrorResponse,
    RevokeRequest,
    RevokeResponse,
    ServerMetadata,
    TokenRequest,
    TokenResponse,
    UserInfoResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])
metadata_router = APIRouter(tags=["OAuth2"])

_ERROR_RESPONSES = {400: {"model": OAuthErrorResponse}, 401: {"model": OAuthErrorResponse}}
_MALFORMED_BODY = OAuthError("invalid_request", "Malformed request body")


def _rate_limited(request: Request) -> JSONResponse | None:
    """429 response when the caller's bucket is empty, else None."""
    limiter = getattr(request.app.state, "auth_limiter", None)
    if limiter is None:
        return None
    client_ip = request.client.host if request.client else "unknown"
    info = limiter.check(client_ip)
    if info.allowed:
        return None
    logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
    return JSONResponse(
        status_code=429,
        content={"error": "too_many_requests", "error_description": "Too many requests"},
        headers=info.headers(),
    )


async def _read_params(request: Request) -> dict[str, str] | None:
    """Request body as a flat dict; accepts form-encoded or JSON. None if malformed."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: str(v) for k, v in form.items()}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    return {k: str(v) for k, v in data.items() if v is not None}


def _client_credentials(
    request: Request, client_id: str | None, client_secret: str | None
) -> tuple[str | None, str | None]:
    """Prefer HTTP Basic (client_secret_basic), fall back to body fields."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Basic "):
        try:
            decoded = base64.b64decode(auth[6:].strip(), validate=True).decode()
        except (binascii.Error, UnicodeDecodeError):
            return None, None
        basic_id, sep, basic_secret = decoded.partition(":")
        if sep:
            return unquote_plus(basic_id), unquote_plus(basic_secret)
        return None, None
    return client_id, client_secret


def _token_response(result: dict) -> JSONResponse:
    return JSONResponse(content=result, headers=NO_STORE_HEADERS)


@router.get("/oauth/authorize", responses={302: {"description": "Redirect with code"}})
async def authorize(
    request: Request,
    response_type: str | None = Query(None),
    client_id: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    scope: str | None = Query(None),
    state: str | None = Query(None),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
):
    """Issue an authorization code and redirect back to the client."""
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    server = get_oauth_server()
    grant, error = server.authorize(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    if error:
        logger.info("Authorization rejected for %s: %s", client_id, error.error)
        return oauth_error_response(error)

    return RedirectResponse(server.build_redirect(grant), status_code=302)


@router.post("/oauth/token", response_model=TokenResponse, responses=_ERROR_RESPONSES)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for an access token."""
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    params = await _read_params(request)
    if params is None:
        return oauth_error_response(_MALFORMED_BODY)
    body = TokenRequest.model_validate(params)
    client_id, client_secret = _client_credentials(request, body.client_id, body.client_secret)

    server = get_oauth_server()
    if not body.grant_type:
        return oauth_error_response(OAuthError("invalid_request", "grant_type is required"))
    if body.grant_type == "authorization_code":
        result, error = server.exchange(
            code=body.code,
            client_id=client_id,
            client_secret=client_secret,
            code_verifier=body.code_verifier,
            redirect_uri=body.redirect_uri,
        )
    elif body.grant_type == "refresh_token":
        result, error = server.refresh(body.refresh_token, client_id, client_secret)
    else:
        error = OAuthError("unsupported_grant_type", f"Unsupported grant_type: {body.grant_type}")

    if error:
        logger.info("Token request rejected (%s): %s", body.grant_type, error.error)
        return oauth_error_response(error)
    return _token_response(result)


@router.post("/oauth/refresh", response_model=TokenResponse, responses=_ERROR_RESPONSES)
async def token_refresh(request: Request):
    """Refresh-only variant of the token endpoint."""
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    params = await _read_params(request)
    if params is None:
        return oauth_error_response(_MALFORMED_BODY)
    body = TokenRequest.model_validate(params)
    if body.grant_type != "refresh_token":
        return oauth_error_response(
            OAuthError("unsupported_grant_type", "Only refresh token grant is supported")
        )

    client_id, client_secret = _client_credentials(request, body.client_id, body.client_secret)
    result, error = get_oauth_server().refresh(body.refresh_token, client_id, client_secret)
    if error:
        logger.info("Refresh rejected: %s", error.error)
        return oauth_error_response(error)
    return _token_response(result)


@router.get("/oauth/userinfo", response_model=UserInfoResponse, responses=_ERROR_RESPONSES)
async def userinfo(request: Request):
    """Identity claims for the bearer token's subject."""
    try:
        result, error = await get_oauth_server().userinfo(get_bearer_token(request))
    except httpx.HTTPError:
        logger.exception("User profile lookup failed")
        return server_error_response()
    if error:
        return oauth_error_response(error)
    return result


@router.post(
    "/oauth/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
)
async def introspect(request: Request):
    """Report whether a token is live, with its metadata when it is."""
    params = await _read_params(request)
    if params is None:
        return oauth_error_response(_MALFORMED_BODY)
    body = IntrospectRequest.model_validate(params)
    if not body.token:
        return oauth_error_response(OAuthError("invalid_request", "Token parameter is required"))
    return get_oauth_server().introspect(body.token, body.token_type_hint)


@router.post("/oauth/revoke", response_model=RevokeResponse, responses=_ERROR_RESPONSES)
async def revoke(request: Request):
    """Revoke an access or refresh token (RFC 7009)."""
    params = await _read_params(request)
    if params is None:
        return oauth_error_response(_MALFORMED_BODY)
    body = RevokeRequest.model_validate(params)
    client_id, client_secret = _client_credentials(request, body.client_id, body.client_secret)
    revoked, error = get_oauth_server().revoke(
        body.token, client_id, client_secret, body.token_type_hint
    )
    if error:
        return oauth_error_response(error)
    return {"revoked": revoked}


@metadata_router.get("/.well-known/oauth-authorization-server", response_model=ServerMetadata)
async def server_metadata(request: Request):
    """RFC 8414 discovery document."""
    from porter_oauth.config import get_settings

    settings = getattr(request.app.state, "settings", None) or get_settings()
    issuer = settings.issuer.rstrip("/")
    return ServerMetadata(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/oauth/authorize",
        token_endpoint=f"{issuer}/oauth/token",
        userinfo_endpoint=f"{issuer}/oauth/userinfo",
        introspection_endpoint=f"{issuer}/oauth/introspect",
        revocation_endpoint=f"{issuer}/oauth/revoke",
        scopes_supported=get_oauth_server().scopes_supported(),
    )
