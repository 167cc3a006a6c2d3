"""HTTP server for Porter OAuth.

``create_api_app()`` builds the FastAPI application: OAuth routes, CORS,
exception handlers, the per-IP rate limiter and a lifespan that runs the
cleanup sweeper. ``run_api_server()`` serves it with uvicorn.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from porter_oauth import __version__, lifecycle
from porter_oauth.config import Settings, get_settings

if TYPE_CHECKING:
    from porter_oauth.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


def create_api_app(
    settings: Settings | None = None,
    server: AuthorizationServer | None = None,
):
    """Build the FastAPI application.

    Explicit *settings* also configure the authorization server (client,
    lifetimes, store, profiles) and the metadata issuer. A ready *server*
    takes precedence over the one *settings* would build.
    """
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from porter_oauth.api.errors import register_exception_handlers
    from porter_oauth.api.oauth2.server import (
        AuthorizationServer,
        get_oauth_server,
        set_oauth_server,
    )
    from porter_oauth.api.oauth2.sweeper import CleanupSweeper
    from porter_oauth.api.v1 import mount_routers
    from porter_oauth.security.rate_limiter import per_minute

    if server is None and settings is not None:
        server = AuthorizationServer.from_settings(settings)
    if server is not None:
        set_oauth_server(server)
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = CleanupSweeper(get_oauth_server().storage, interval=settings.cleanup_interval)
        if app.state.auth_limiter is not None:
            sweeper.add_hook(app.state.auth_limiter.cleanup)
        app.state.sweeper = sweeper
        lifecycle.register("sweeper", shutdown=sweeper.stop)
        await sweeper.start()
        try:
            yield
        finally:
            await lifecycle.shutdown_all()

    app = FastAPI(
        title="Porter OAuth",
        description="OAuth 2.0 authorization server for the Porter travel agent.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_limiter = per_minute(settings.auth_rate_limit_per_minute)

    # --- CORS -----------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins or ["*"],
        allow_credentials=bool(settings.cors_allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    register_exception_handlers(app)
    mount_routers(app)
    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8888,
    dev: bool = False,
) -> None:
    """Start the authorization server."""
    import uvicorn

    logger.info("Porter OAuth listening on http://%s:%d", host, port)
    if dev:
        uvicorn.run(
            "porter_oauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port)
