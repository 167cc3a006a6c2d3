# Error rendering for the HTTP layer.
# Created: 2026-10-18
#
# Protocol errors -> {"error", "error_description"} with 400/401/403/404.
# Resource-gate errors -> {"error", "message", "code", ...} with 401/403.
# Anything unexpected -> 500 {"error": "server_error"}; details stay in the log.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import Request
from fastapi.responses import JSONResponse

from porter_oauth.api.oauth2.server import OAuthError

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_STATUS_TITLES = {401: "Unauthorized", 403: "Forbidden"}


class OAuthTokenError(Exception):
    """Bearer-token check failed on a protected resource."""

    def __init__(self, status_code: int, code: str, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.extra = extra


def oauth_error_response(error: OAuthError) -> JSONResponse:
    headers = dict(NO_STORE_HEADERS)
    if error.error == "invalid_token":
        headers["WWW-Authenticate"] = f'Bearer error="{error.error}"'
    elif error.error == "insufficient_scope":
        headers["WWW-Authenticate"] = 'Bearer error="insufficient_scope", scope="read"'
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


def server_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "server_error", "error_description": "Internal server error"},
    )


async def _handle_token_error(request: Request, exc: OAuthTokenError) -> JSONResponse:
    body: dict[str, Any] = {
        "error": _STATUS_TITLES.get(exc.status_code, "Error"),
        "message": exc.message,
        "code": exc.code,
        **exc.extra,
    }
    headers = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return server_error_response()


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OAuthTokenError, _handle_token_error)
    app.add_exception_handler(Exception, _handle_unexpected)
